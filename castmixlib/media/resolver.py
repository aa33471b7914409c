#!/usr/bin/env python3

"""
Resolve request assets (url, inline base64, local path) into files inside
one job workspace. Each asset is fetched exactly once and never retried.
"""

import base64
import binascii
import logging
import mimetypes
import os
import re
import shutil
from urllib.parse import urlparse
import PIL.Image
import requests
from castmixlib.core import models
from castmixlib.core.errors import AssetDecodeError
from castmixlib.core.errors import AssetFetchError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

DATA_URI_RE = re.compile(r'^data:(?P<header>[^,]*),(?P<payload>.*)$', re.DOTALL)

# asset kind -> accepted media type prefixes
KIND_MIME_PREFIXES = {
	'video': ('video/', 'application/octet-stream'),
	'image': ('image/', 'application/octet-stream'),
	'audio': ('audio/', 'application/octet-stream'),
}

DEFAULT_EXTENSIONS = {
	'video': '.mp4',
	'image': '.png',
	'audio': '.mp3',
}

EXTRA_EXTENSIONS = {
	'audio/mp3': '.mp3',
	'audio/mpeg': '.mp3',
	'video/mp4': '.mp4',
	'image/png': '.png',
	'image/jpeg': '.jpg',
}

#============================================

class AssetResolver():
	def __init__(self, work_dir: str, fetch_timeout: float = 60.0,
		session: requests.Session = None):
		self.work_dir = work_dir
		self.fetch_timeout = fetch_timeout
		self.session = session

	#============================
	def resolve(self, asset: models.MediaAsset) -> str:
		if asset.is_resolved:
			raise AssetFetchError(f"{asset.role} asset was already resolved")
		if asset.kind not in models.ASSET_KINDS:
			raise AssetFetchError(f"{asset.role} has unknown kind {asset.kind}")
		if asset.source_form == 'inline':
			out_file = self._resolve_inline(asset)
		elif asset.source_form == 'url':
			out_file = self._resolve_url(asset)
		elif asset.source_form == 'path':
			out_file = self._resolve_path(asset)
		else:
			raise AssetFetchError(
				f"{asset.role} has unsupported source form {asset.source_form}")
		if asset.kind == 'image':
			self._verify_image(out_file, asset)
		asset.resolved_path = out_file
		asset.size_bytes = os.path.getsize(out_file)
		logger.debug(f"resolved {asset.role} to {out_file} ({asset.size_bytes} bytes)")
		return out_file

	#============================
	def resolve_all(self, assets: list) -> list:
		return [self.resolve(asset) for asset in assets]

	#============================
	def _resolve_inline(self, asset: models.MediaAsset) -> str:
		(mime_type, payload) = split_inline_payload(asset.value)
		if mime_type is not None:
			self._check_mime(mime_type, asset)
			asset.mime_type = mime_type
		raw_bytes = decode_base64(payload, asset.role)
		out_file = self._asset_path(asset, mime_type)
		with open(out_file, 'wb') as handle:
			handle.write(raw_bytes)
		return out_file

	#============================
	def _resolve_url(self, asset: models.MediaAsset) -> str:
		url = asset.value
		parsed = urlparse(url)
		if parsed.scheme not in ('http', 'https') or parsed.netloc == '':
			raise AssetFetchError(f"{asset.role} url is not an http(s) url: {url}")
		getter = self.session.get if self.session is not None else requests.get
		try:
			response = getter(url, stream=True, timeout=self.fetch_timeout,
				allow_redirects=True)
		except requests.RequestException as exc:
			raise AssetFetchError(f"failed to fetch {asset.role} from {url}: {exc}") from exc
		try:
			if response.status_code < 200 or response.status_code >= 300:
				raise AssetFetchError(
					f"failed to fetch {asset.role}: HTTP {response.status_code} from {url}")
			mime_type = response.headers.get('Content-Type')
			if mime_type is not None:
				mime_type = mime_type.split(';')[0].strip().lower()
				if self._mime_matches(mime_type, asset.kind):
					asset.mime_type = mime_type
				else:
					mime_type = None
			out_file = self._asset_path(asset, mime_type, url_path=parsed.path)
			try:
				with open(out_file, 'wb') as handle:
					for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
						if chunk:
							handle.write(chunk)
			except requests.RequestException as exc:
				raise AssetFetchError(
					f"download of {asset.role} from {url} was interrupted: {exc}") from exc
		finally:
			response.close()
		if os.path.getsize(out_file) == 0:
			raise AssetFetchError(f"{asset.role} download from {url} was empty")
		return out_file

	#============================
	def _resolve_path(self, asset: models.MediaAsset) -> str:
		source_file = os.path.expanduser(asset.value)
		if not os.path.isfile(source_file):
			raise AssetFetchError(f"{asset.role} file not found: {source_file}")
		ext = os.path.splitext(source_file)[1] or DEFAULT_EXTENSIONS[asset.kind]
		out_file = os.path.join(self.work_dir, f"{asset.role}{ext.lower()}")
		try:
			shutil.copyfile(source_file, out_file)
		except OSError as exc:
			raise AssetFetchError(f"failed to copy {asset.role} from {source_file}: {exc}") from exc
		return out_file

	#============================
	def _asset_path(self, asset: models.MediaAsset, mime_type: str,
		url_path: str = None) -> str:
		ext = None
		if mime_type is not None:
			ext = EXTRA_EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type)
		if ext is None and url_path:
			ext = os.path.splitext(url_path)[1] or None
		if ext is None:
			ext = DEFAULT_EXTENSIONS[asset.kind]
		return os.path.join(self.work_dir, f"{asset.role}{ext.lower()}")

	#============================
	def _mime_matches(self, mime_type: str, kind: str) -> bool:
		return mime_type.startswith(KIND_MIME_PREFIXES[kind])

	#============================
	def _check_mime(self, mime_type: str, asset: models.MediaAsset) -> None:
		if not self._mime_matches(mime_type, asset.kind):
			raise AssetDecodeError(
				f"{asset.role} payload has media type {mime_type}, expected {asset.kind}")

	#============================
	def _verify_image(self, image_file: str, asset: models.MediaAsset) -> None:
		try:
			with PIL.Image.open(image_file) as image:
				image.verify()
		except (PIL.UnidentifiedImageError, OSError, SyntaxError) as exc:
			raise AssetDecodeError(f"{asset.role} is not a readable image: {exc}") from exc

#============================================

def split_inline_payload(value: str) -> tuple:
	"""
	Split an optional data: prefix from a base64 payload.

	Returns (mime_type or None, payload text).
	"""
	text = value.strip()
	if not text.lower().startswith('data:'):
		return (None, text)
	match = DATA_URI_RE.match(text)
	if match is None:
		raise AssetFetchError("malformed inline encoding: data uri has no payload")
	header_parts = match.group('header').split(';')
	if 'base64' not in [part.strip().lower() for part in header_parts[1:]]:
		raise AssetFetchError("malformed inline encoding: data uri is not base64")
	mime_type = header_parts[0].strip().lower() or None
	return (mime_type, match.group('payload'))

#============================================

def decode_base64(payload: str, role: str = 'asset') -> bytes:
	compact = re.sub(r'\s+', '', payload)
	if compact == '':
		raise AssetDecodeError(f"{role} inline payload is empty")
	# tolerate payloads that dropped their padding
	compact += '=' * (-len(compact) % 4)
	try:
		return base64.b64decode(compact, validate=True)
	except (binascii.Error, ValueError) as exc:
		raise AssetDecodeError(f"{role} inline payload is not valid base64") from exc
