#!/usr/bin/env python3

import logging
import os
import threading
import time
from castmixlib.core import filtergraph
from castmixlib.core import models
from castmixlib.core import utils
from castmixlib.core.config import RenderSettings
from castmixlib.core.errors import RenderError
from castmixlib.media import ffmpeg_render
from castmixlib.media import stills

logger = logging.getLogger(__name__)

#============================================

class RenderExecutor():
	def __init__(self, settings: RenderSettings, work_dir: str,
		cancel_event: threading.Event = None, progress_callback=None):
		self.settings = settings
		self.work_dir = work_dir
		self.cancel_event = cancel_event
		self.progress_callback = progress_callback
		self.last_command = None

	#============================
	def render(self, plan: models.CompositionPlan, video_file: str,
		chart_file: str, policy: models.CompositionPolicy,
		music_file: str = None, output_name: str = 'output.mp4') -> str:
		t0 = time.time()
		inputs = self._prepare_inputs(plan, video_file, chart_file, policy,
			music_file)
		output_file = os.path.join(self.work_dir, output_name)
		builder = filtergraph.FilterGraphBuilder(plan, self.settings, inputs)
		command = builder.build(output_file)
		self.last_command = command
		try:
			ffmpeg_run = ffmpeg_render.runFfmpeg(command.args,
				command.total_seconds, timeout=self.settings.render_timeout,
				cancel_event=self.cancel_event,
				progress_callback=self.progress_callback)
		except RenderError:
			self._discard(output_file)
			raise
		if not utils.file_is_nonempty(output_file):
			self._discard(output_file)
			raise RenderError("ffmpeg exited cleanly but wrote no output file",
				backend_trace=ffmpeg_run.backend_trace())
		logger.info(f"render complete in {time.time() - t0:.1f} seconds: {output_file}")
		return output_file

	#============================
	def _prepare_inputs(self, plan: models.CompositionPlan, video_file: str,
		chart_file: str, policy: models.CompositionPolicy,
		music_file: str) -> filtergraph.RenderInputs:
		inputs = filtergraph.RenderInputs(source_video=video_file,
			loop_music=policy.loop_background,
			overlay_position=policy.overlay_position)
		width = filtergraph.even_dimension(plan.width)
		height = filtergraph.even_dimension(plan.height)
		has_still = any(seg.kind == 'still' for seg in plan.video_segments)
		has_overlay = any(seg.overlay is not None for seg in plan.video_segments)
		try:
			if has_still:
				inputs.fullframe_still = stills.render_fullframe_still(chart_file,
					os.path.join(self.work_dir, "chart-fullframe.png"), width, height,
					fit=policy.chart_fit, background=policy.chart_background)
			if has_overlay:
				inputs.overlay_still = stills.render_overlay_still(chart_file,
					os.path.join(self.work_dir, "chart-overlay.png"), width, height,
					scale=policy.overlay_scale, position=policy.overlay_position)
		except (OSError, ValueError) as exc:
			raise RenderError(f"could not prepare chart image: {exc}") from exc
		if plan.uses_track('music'):
			if music_file is None:
				raise RenderError("plan mixes background audio but none was resolved")
			inputs.music = music_file
		return inputs

	#============================
	def _discard(self, output_file: str) -> None:
		if os.path.exists(output_file):
			try:
				os.remove(output_file)
			except OSError as exc:
				logger.warning(f"could not remove partial output {output_file}: {exc}")
