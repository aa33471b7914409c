#!/usr/bin/env python3

"""
Integration tests for the full compositing pipeline against real ffmpeg.
"""

# Standard Library
import base64
import json
import os
import shutil
import subprocess
import sys
import tempfile
import unittest

import PIL.Image

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

from castmixlib.core.job import CompositionJob
from castmixlib.core.loader import RequestLoader

#============================================

REQUIRED_TOOLS = ("ffmpeg", "ffprobe")
MISSING_TOOLS = [tool for tool in REQUIRED_TOOLS if shutil.which(tool) is None]
HAVE_TOOLS = len(MISSING_TOOLS) == 0
SKIP_TOOLS_REASON = f"missing tools: {', '.join(MISSING_TOOLS)}"

#============================================

def _run(cmd: str) -> None:
	subprocess.run(cmd, shell=True, check=True,
		stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

#============================================

def _make_source(path: str, seconds: int, with_audio: bool) -> None:
	cmd = "ffmpeg -y -f lavfi -i testsrc=size=320x240:rate=25 "
	if with_audio:
		cmd += "-f lavfi -i sine=frequency=440:sample_rate=48000 "
	cmd += f"-t {seconds} "
	cmd += "-c:v libx264 -preset ultrafast -crf 30 -pix_fmt yuv420p "
	if with_audio:
		cmd += "-c:a aac -ac 2 -shortest "
	cmd += f"\"{path}\""
	_run(cmd)

#============================================

def _make_music(path: str, seconds: int) -> None:
	cmd = (
		"ffmpeg -y "
		"-f lavfi -i sine=frequency=220:sample_rate=44100 "
		f"-t {seconds} -c:a aac \"{path}\""
	)
	_run(cmd)

#============================================

def _chart_data_uri() -> str:
	with tempfile.TemporaryDirectory() as temp_dir:
		chart_path = os.path.join(temp_dir, "chart.png")
		image = PIL.Image.new("RGBA", (300, 120), color=(20, 160, 90, 255))
		image.save(chart_path)
		with open(chart_path, "rb") as handle:
			data = handle.read()
	return "data:image/png;base64," + base64.b64encode(data).decode("ascii")

#============================================

def _probe_stream_types(path: str) -> set:
	cmd = f"ffprobe -v error -show_entries stream=codec_type -of json \"{path}\""
	payload = subprocess.check_output(cmd, shell=True).decode("utf-8")
	data = json.loads(payload)
	return {stream.get("codec_type") for stream in data.get("streams", [])}

#============================================

def _probe_duration(path: str) -> float:
	cmd = f"ffprobe -v error -show_entries format=duration -of json \"{path}\""
	payload = subprocess.check_output(cmd, shell=True).decode("utf-8")
	data = json.loads(payload)
	duration = data.get("format", {}).get("duration")
	return float(duration) if duration is not None else 0.0

#============================================

@unittest.skipUnless(HAVE_TOOLS, SKIP_TOOLS_REASON)
class CompositeIntegrationTest(unittest.TestCase):
	#============================================
	def test_break_window_with_music(self) -> None:
		with tempfile.TemporaryDirectory() as temp_dir:
			source_path = os.path.join(temp_dir, "source.mp4")
			music_path = os.path.join(temp_dir, "music.m4a")
			_make_source(source_path, 4, with_audio=True)
			# shorter than the output so it has to loop
			_make_music(music_path, 3)
			request = {
				'video': {'form': 'path', 'value': source_path},
				'chart': {'form': 'inline', 'value': _chart_data_uri()},
				'audio': {'form': 'path', 'value': music_path},
				'policy': {'breakWindow': {'start': 2, 'duration': 2}},
				'delivery': 'inline',
				'settings': {'cacheDir': temp_dir, 'cleanupGrace': 0},
			}
			loaded = RequestLoader(request).load()
			with CompositionJob(loaded) as job:
				response = job.run()
				self.assertEqual(response['status'], 'done', response)
				output_path = job.output_file
				stream_types = _probe_stream_types(output_path)
				self.assertIn("video", stream_types)
				self.assertIn("audio", stream_types)
				duration = _probe_duration(output_path)
				self.assertGreater(duration, 5.8)
				self.assertLess(duration, 6.2)
				work_dir = job.workspace.path
			self.assertTrue(response['artifact']['value'].startswith(
				"data:video/mp4;base64,"))
			self.assertFalse(os.path.exists(work_dir))

	#============================================
	def test_overlay_on_silent_source_adds_audio(self) -> None:
		with tempfile.TemporaryDirectory() as temp_dir:
			source_path = os.path.join(temp_dir, "silent.mp4")
			_make_source(source_path, 3, with_audio=False)
			request = {
				'video': source_path,
				'chart': _chart_data_uri(),
				'policy': {'overlayWindow': {'start': 0, 'end': 2}},
				'settings': {'cacheDir': temp_dir, 'cleanupGrace': 0},
			}
			loaded = RequestLoader(request).load()
			with CompositionJob(loaded) as job:
				response = job.run()
				self.assertEqual(response['status'], 'done', response)
				stream_types = _probe_stream_types(job.output_file)
				self.assertIn("audio", stream_types)
				duration = _probe_duration(job.output_file)
				self.assertGreater(duration, 2.8)
				self.assertLess(duration, 3.2)

	#============================================
	def test_break_after_source_end_fails_in_planning(self) -> None:
		with tempfile.TemporaryDirectory() as temp_dir:
			source_path = os.path.join(temp_dir, "short.mp4")
			_make_source(source_path, 2, with_audio=True)
			request = {
				'video': source_path,
				'chart': _chart_data_uri(),
				'policy': {'breakWindow': {'start': 10, 'duration': 5}},
				'settings': {'cacheDir': temp_dir, 'cleanupGrace': 0},
			}
			loaded = RequestLoader(request).load()
			with CompositionJob(loaded) as job:
				response = job.run()
			self.assertEqual(response['status'], 'failed')
			self.assertEqual(response['stage'], 'plan')
			self.assertEqual(response['errorKind'], 'PlanningError')
			self.assertEqual(os.listdir(temp_dir), ["short.mp4"])

#============================================

if __name__ == "__main__":
	unittest.main()
