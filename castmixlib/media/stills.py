#!/usr/bin/env python3

import PIL.Image
import PIL.ImageColor
from castmixlib.core import filtergraph
from castmixlib.core import utils

#============================================

def parse_color(value) -> tuple:
	if value is None:
		return (0, 0, 0)
	if isinstance(value, (list, tuple)) and len(value) == 3:
		return tuple(int(channel) for channel in value)
	if isinstance(value, str):
		return PIL.ImageColor.getrgb(value)[:3]
	raise ValueError("invalid color value for chart background")

#============================================

def cover_image(image, width: int, height: int):
	src_w, src_h = image.size
	if src_w <= 0 or src_h <= 0:
		raise ValueError("invalid chart image size")
	scale = max(width / src_w, height / src_h)
	new_size = (max(1, int(round(src_w * scale))), max(1, int(round(src_h * scale))))
	image = image.resize(new_size, resample=PIL.Image.LANCZOS)
	left = max(0, int(round((new_size[0] - width) / 2.0)))
	top = max(0, int(round((new_size[1] - height) / 2.0)))
	return image.crop((left, top, left + width, top + height))

#============================================

def contain_image(image, width: int, height: int, background):
	src_w, src_h = image.size
	if src_w <= 0 or src_h <= 0:
		raise ValueError("invalid chart image size")
	scale = min(width / src_w, height / src_h)
	new_size = (max(1, int(round(src_w * scale))), max(1, int(round(src_h * scale))))
	image = image.resize(new_size, resample=PIL.Image.LANCZOS)
	canvas = PIL.Image.new("RGB", (width, height), color=parse_color(background))
	left = (width - new_size[0]) // 2
	top = (height - new_size[1]) // 2
	if image.mode == 'RGBA':
		canvas.paste(image, (left, top), image)
	else:
		canvas.paste(image, (left, top))
	return canvas

#============================================

def render_fullframe_still(image_file: str, out_file: str, width: int,
	height: int, fit: str = 'contain', background='#000000') -> str:
	"""
	Fit the chart image to the video frame for a full-frame break segment.
	"""
	with PIL.Image.open(image_file) as source:
		image = source.convert("RGBA")
	if fit == 'cover':
		image = cover_image(image, width, height).convert("RGB")
	else:
		image = contain_image(image, width, height, background)
	image.save(out_file)
	utils.ensure_file_exists(out_file)
	return out_file

#============================================

def render_overlay_still(image_file: str, out_file: str, frame_width: int,
	frame_height: int, scale: float = None, position: tuple = (0, 0)) -> str:
	"""
	Scale the chart for a corner overlay, keeping its alpha channel.

	With no scale the chart keeps its native size unless it would not fit
	inside the frame at the given position.
	"""
	with PIL.Image.open(image_file) as source:
		image = source.convert("RGBA")
	src_w, src_h = image.size
	if src_w <= 0 or src_h <= 0:
		raise ValueError("invalid chart image size")
	max_w = max(2, frame_width - max(0, int(position[0])))
	max_h = max(2, frame_height - max(0, int(position[1])))
	if scale is not None:
		max_w = min(max_w, int(round(frame_width * scale)))
		target = max_w / src_w
	else:
		target = 1.0
	target = min(target, max_w / src_w, max_h / src_h)
	new_size = (filtergraph.even_dimension(src_w * target),
		filtergraph.even_dimension(src_h * target))
	if new_size != image.size:
		image = image.resize(new_size, resample=PIL.Image.LANCZOS)
	image.save(out_file)
	utils.ensure_file_exists(out_file)
	return out_file
