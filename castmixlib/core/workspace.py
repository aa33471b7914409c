#!/usr/bin/env python3

import logging
import os
import shutil
import tempfile
import time

logger = logging.getLogger(__name__)

#============================================

class JobWorkspace():
	"""
	One temporary directory per job, removed on exit whatever the outcome.
	"""
	def __init__(self, cache_dir: str = None, keep_temp: bool = False,
		grace_seconds: float = 0.5, prefix: str = "castmix-job-"):
		self.cache_dir = cache_dir
		self.keep_temp = keep_temp
		self.grace_seconds = grace_seconds
		self.prefix = prefix
		self.path = None

	#============================
	def create(self) -> str:
		if self.path is not None:
			return self.path
		if self.cache_dir is not None and not os.path.exists(self.cache_dir):
			os.makedirs(self.cache_dir)
		self.path = tempfile.mkdtemp(prefix=self.prefix, dir=self.cache_dir)
		logger.debug(f"job workspace {self.path}")
		return self.path

	#============================
	def file_path(self, filename: str) -> str:
		if self.path is None:
			raise RuntimeError("workspace has not been created")
		return os.path.join(self.path, filename)

	#============================
	def cleanup(self) -> bool:
		"""
		Remove the workspace after the grace delay. Returns True when removed.
		"""
		if self.path is None:
			return True
		if self.keep_temp:
			logger.info(f"keeping temporary files in {self.path}")
			return False
		if self.grace_seconds > 0:
			time.sleep(self.grace_seconds)
		try:
			shutil.rmtree(self.path)
		except FileNotFoundError:
			pass
		except OSError as exc:
			logger.warning(f"could not remove job workspace {self.path}: {exc}")
			return False
		self.path = None
		return True

	#============================
	def __enter__(self) -> 'JobWorkspace':
		self.create()
		return self

	#============================
	def __exit__(self, exc_type, exc_value, traceback) -> None:
		self.cleanup()
