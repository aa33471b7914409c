#!/usr/bin/env python3

"""
Object-store client used for uploaded delivery.

Any object with a put(data, name, content_type) method returning a public
url can stand in for HttpBlobStore.
"""

import logging
from urllib.parse import quote
import requests
from castmixlib.core.errors import BlobExistsError
from castmixlib.core.errors import PublishError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ('video/mp4', 'image/png', 'audio/mpeg')
OVERWRITE_MARKER = '_overwrite'

#============================================

def split_overwrite_marker(name: str) -> tuple:
	"""
	Return (clean name, allow overwrite) for names carrying the marker.
	"""
	if OVERWRITE_MARKER in name:
		return (name.replace(OVERWRITE_MARKER, ''), True)
	return (name, False)

#============================================

def _error_details(response) -> tuple:
	try:
		payload = response.json()
	except ValueError:
		return ('', response.text or '')
	if not isinstance(payload, dict):
		return ('', str(payload))
	error = payload.get('error', payload)
	if isinstance(error, dict):
		return (str(error.get('code', '')), str(error.get('message', '')))
	return ('', str(error))

#============================================

class HttpBlobStore():
	def __init__(self, base_url: str, token: str = None, timeout: float = 120.0,
		session: requests.Session = None):
		self.base_url = base_url.rstrip('/')
		self.token = token
		self.timeout = timeout
		self.session = session

	#============================
	def put(self, data: bytes, name: str, content_type: str = 'video/mp4') -> str:
		if content_type not in ALLOWED_CONTENT_TYPES:
			raise PublishError(f"content type {content_type} is not accepted by the store")
		(clean_name, allow_overwrite) = split_overwrite_marker(name)
		if clean_name.strip('/') == '':
			raise PublishError("upload name is empty")
		url = f"{self.base_url}/{quote(clean_name.lstrip('/'))}"
		headers = {
			'Content-Type': content_type,
			'x-content-type': content_type,
			'x-add-random-suffix': '0',
			'x-allow-overwrite': '1' if allow_overwrite else '0',
		}
		if self.token:
			headers['Authorization'] = f"Bearer {self.token}"
		putter = self.session.put if self.session is not None else requests.put
		if allow_overwrite:
			logger.info(f"overwriting existing blob {clean_name}")
		try:
			response = putter(url, data=data, headers=headers, timeout=self.timeout)
		except requests.RequestException as exc:
			raise PublishError(f"upload of {clean_name} failed: {exc}") from exc
		if response.status_code < 200 or response.status_code >= 300:
			(code, message) = _error_details(response)
			detail = f"HTTP {response.status_code} {code} {message}".strip()
			if response.status_code == 409 or 'already_exists' in code \
				or 'already exists' in message.lower():
				raise BlobExistsError(f"blob {clean_name} already exists",
					backend_trace=detail)
			raise PublishError(f"upload of {clean_name} failed", backend_trace=detail)
		try:
			payload = response.json()
		except ValueError as exc:
			raise PublishError(f"upload of {clean_name} returned no json body") from exc
		public_url = payload.get('url') if isinstance(payload, dict) else None
		if not public_url:
			raise PublishError(f"upload of {clean_name} returned no public url")
		return public_url
