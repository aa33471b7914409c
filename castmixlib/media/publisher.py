#!/usr/bin/env python3

import base64
import logging
import os
from castmixlib.core import models
from castmixlib.core.errors import BlobExistsError
from castmixlib.core.errors import PublishError

logger = logging.getLogger(__name__)

OUTPUT_CONTENT_TYPE = 'video/mp4'

#============================================

class ArtifactPublisher():
	def __init__(self, blob_store=None):
		self.blob_store = blob_store

	#============================
	def publish(self, output_file: str, delivery: str,
		name: str = None) -> models.OutputArtifact:
		if delivery not in models.DELIVERY_MODES:
			raise PublishError(f"unknown delivery mode {delivery}")
		try:
			with open(output_file, 'rb') as handle:
				data = handle.read()
		except OSError as exc:
			raise PublishError(f"could not read rendered file {output_file}: {exc}") from exc
		if len(data) == 0:
			raise PublishError(f"rendered file {output_file} is empty")
		if delivery == 'inline':
			value = to_data_uri(data, OUTPUT_CONTENT_TYPE)
		else:
			value = self._upload(data, name or os.path.basename(output_file))
		artifact = models.OutputArtifact(form=delivery, value=value,
			path=output_file, size_bytes=len(data))
		return artifact

	#============================
	def _upload(self, data: bytes, name: str) -> str:
		if self.blob_store is None:
			raise PublishError("uploaded delivery requires an object store")
		try:
			public_url = self.blob_store.put(data, name, OUTPUT_CONTENT_TYPE)
		except PublishError:
			raise
		except Exception as exc:
			# foreign store clients raise their own exception types
			if 'already exists' in str(exc).lower():
				raise BlobExistsError(f"blob {name} already exists: {exc}") from exc
			raise PublishError(f"upload of {name} failed: {exc}") from exc
		logger.info(f"uploaded {name} to {public_url}")
		return public_url

#============================================

def to_data_uri(data: bytes, content_type: str) -> str:
	encoded = base64.b64encode(data).decode('ascii')
	return f"data:{content_type};base64,{encoded}"
