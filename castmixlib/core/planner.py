#!/usr/bin/env python3

"""
Composition planning: turn a probed source and a policy into a plan of
named video/audio segments joined by one concat step per stream.

The planner does no I/O. Every timing decision comes from the probed
source duration and the policy windows.
"""

import logging
from decimal import Decimal
from fractions import Fraction
from castmixlib.core import models
from castmixlib.core.errors import PlanningError

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal('0.040')

#============================================

class CompositionPlanner():
	def __init__(self, profile: models.MediaProfile,
		policy: models.CompositionPolicy, fps: Fraction,
		has_chart: bool = True, tolerance: Decimal = DEFAULT_TOLERANCE):
		self.profile = profile
		self.policy = policy
		self.fps = fps
		self.has_chart = has_chart
		self.tolerance = Decimal(str(tolerance))
		self.has_music = policy.background_audio is not None
		self._video_segments = []
		self._audio_segments = []
		self._audio_cursor = Decimal(0)

	#============================
	def plan(self) -> models.CompositionPlan:
		self._video_segments = []
		self._audio_segments = []
		self._audio_cursor = Decimal(0)
		duration = Decimal(str(self.profile.duration_seconds))
		if duration <= 0:
			raise PlanningError("source video has no duration",
				invariant='source_too_short')
		if self.policy.break_window is not None:
			if self.policy.overlay_window is not None:
				logger.debug("break window set; overlay window ignored")
			self._plan_break(duration)
		else:
			self._plan_overlay(duration)
		plan = models.CompositionPlan(
			video_segments=tuple(self._video_segments),
			audio_segments=tuple(self._audio_segments),
			video_concat=models.ConcatStep('vout',
				tuple(seg.name for seg in self._video_segments), 'video'),
			audio_concat=models.ConcatStep('aout',
				tuple(seg.name for seg in self._audio_segments), 'audio'),
			width=self.profile.width,
			height=self.profile.height,
			fps=self.fps,
			tolerance=self.tolerance,
		)
		validate_plan(plan)
		return plan

	#============================
	def _plan_overlay(self, duration: Decimal) -> None:
		overlay = self.policy.overlay_window
		if overlay is not None and not self.has_chart:
			raise PlanningError("overlay window requires a chart image",
				invariant='invalid_window')
		if overlay is not None:
			if overlay.start < 0 or overlay.end <= overlay.start:
				raise PlanningError("overlay window requires 0 <= start < end",
					invariant='invalid_window')
			if overlay.start >= duration:
				raise PlanningError(
					f"video shorter than overlay start ({duration}s < {overlay.start}s)",
					invariant='source_too_short')
			overlay = models.OverlayWindow(overlay.start, min(overlay.end, duration))
		self._add_video_trim(Decimal(0), duration, overlay=overlay)
		self._add_audio_span(Decimal(0), duration, duration)

	#============================
	def _plan_break(self, duration: Decimal) -> None:
		window = self.policy.break_window
		if not self.has_chart:
			raise PlanningError("break window requires a chart image",
				invariant='invalid_window')
		if window.start < 0 or window.duration <= 0:
			raise PlanningError("break window requires start >= 0 and duration > 0",
				invariant='invalid_window')
		if duration < window.start:
			raise PlanningError(
				f"video shorter than break time ({duration}s < {window.start}s)",
				invariant='source_too_short')
		break_start = window.start
		self._add_video_trim(Decimal(0), break_start)
		self._add_video_still(window.duration)
		self._add_video_trim(break_start, duration)
		if not self.profile.has_audio:
			# cover exactly the video kept after dropping sub-frame trims
			kept = sum((seg.duration for seg in self._video_segments), Decimal(0))
			self._add_audio_span(None, None, kept)
			return
		self._add_audio_span(Decimal(0), break_start, break_start)
		self._add_audio_span(None, None, window.duration)
		self._add_audio_span(break_start, duration, duration - break_start)

	#============================
	def _is_empty(self, duration: Decimal) -> bool:
		# shorter than one frame renders as an empty clip
		return duration * Decimal(self.fps.numerator) < Decimal(self.fps.denominator)

	#============================
	def _add_video_trim(self, start: Decimal, end: Decimal,
		overlay: models.OverlayWindow = None) -> None:
		duration = end - start
		if self._is_empty(duration):
			return
		name = f"v{len(self._video_segments)}"
		segment = models.VideoSegment(name=name, kind='trim', duration=duration,
			start=start, end=end, overlay=overlay)
		self._video_segments.append(segment)

	#============================
	def _add_video_still(self, duration: Decimal) -> None:
		name = f"v{len(self._video_segments)}"
		segment = models.VideoSegment(name=name, kind='still', duration=duration)
		self._video_segments.append(segment)

	#============================
	def _add_audio_span(self, voice_start: Decimal, voice_end: Decimal,
		duration: Decimal) -> None:
		"""
		Append one audio segment of the given duration at the output cursor.

		voice_start/voice_end select the source voice slice; None means the
		span has no voice (a break, or a source without audio). Background
		music follows output time so it plays continuously across segments,
		and dropped sub-frame spans do not advance the cursor.
		"""
		if self._is_empty(duration):
			return
		out_start = self._audio_cursor
		out_end = out_start + duration
		weights = self.policy.mix_weights
		slices = []
		if voice_start is not None and self.profile.has_audio:
			slices.append(models.AudioSlice('voice', voice_start, voice_end,
				weights.voice))
		if self.has_music:
			slices.append(models.AudioSlice('music', out_start, out_end,
				weights.music))
		if len(slices) == 0:
			kind = 'silence'
		elif len(slices) == 1:
			kind = 'trim'
		else:
			kind = 'mix'
		if kind == 'trim' and slices[0].track == 'voice':
			# voice alone plays unmodified
			slices[0] = models.AudioSlice('voice', voice_start, voice_end, 1.0)
		name = f"a{len(self._audio_segments)}"
		segment = models.AudioSegment(name=name, kind=kind, duration=duration,
			slices=tuple(slices))
		self._audio_segments.append(segment)
		self._audio_cursor = out_end

#============================================

def validate_plan(plan: models.CompositionPlan) -> None:
	"""
	Reject plans whose concat steps reference unknown segments or whose
	video and audio totals disagree beyond the plan tolerance.
	"""
	_validate_concat(plan.video_concat, plan.video_segments, 'video')
	_validate_concat(plan.audio_concat, plan.audio_segments, 'audio')
	for segment in plan.video_segments:
		if segment.duration <= 0:
			raise PlanningError(f"video segment {segment.name} has no duration",
				invariant='invalid_window')
		if segment.kind == 'trim' and segment.end - segment.start != segment.duration:
			raise PlanningError(f"video segment {segment.name} trim does not match "
				"its duration", invariant='duration_mismatch')
	for segment in plan.audio_segments:
		if segment.duration <= 0:
			raise PlanningError(f"audio segment {segment.name} has no duration",
				invariant='invalid_window')
		for item in segment.slices:
			if item.duration != segment.duration:
				raise PlanningError(f"audio segment {segment.name} slice {item.track} "
					"does not match its duration", invariant='duration_mismatch')
	video_total = plan.video_duration
	audio_total = plan.audio_duration
	if abs(video_total - audio_total) > plan.tolerance:
		raise PlanningError(
			f"video duration {video_total}s and audio duration {audio_total}s "
			f"differ by more than {plan.tolerance}s",
			invariant='duration_mismatch')

#============================================

def _validate_concat(step: models.ConcatStep, segments: tuple, media: str) -> None:
	if len(step.inputs) == 0:
		raise PlanningError(f"{media} plan has no segments",
			invariant='dangling_segment')
	produced = set()
	for segment in segments:
		if segment.name in produced:
			raise PlanningError(f"duplicate {media} segment {segment.name}",
				invariant='dangling_segment')
		produced.add(segment.name)
	for name in step.inputs:
		if name not in produced:
			raise PlanningError(
				f"{media} concat references unknown segment {name}",
				invariant='dangling_segment')
