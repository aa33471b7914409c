#!/usr/bin/env python3

"""
Translate a CompositionPlan into an ffmpeg command line.

Input 0 is always the source video. Chart and music inputs are added only
when the plan uses them. Every audio segment is padded and trimmed to its
declared duration, so the two concat outputs share one length.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from castmixlib.core import models
from castmixlib.core import utils
from castmixlib.core.config import RenderSettings
from castmixlib.core.errors import RenderError

#============================================

@dataclass
class RenderInputs():
	source_video: str
	fullframe_still: str = None
	overlay_still: str = None
	music: str = None
	loop_music: bool = True
	overlay_position: tuple = (10, 10)

#============================================

@dataclass
class RenderCommand():
	args: list
	filter_complex: str
	output_file: str
	total_seconds: float
	input_files: list = field(default_factory=list)

#============================================

def even_dimension(value: int) -> int:
	value = max(2, int(value))
	return value - (value % 2)

#============================================

class FilterGraphBuilder():
	def __init__(self, plan: models.CompositionPlan, settings: RenderSettings,
		inputs: RenderInputs):
		self.plan = plan
		self.settings = settings
		self.inputs = inputs
		self.width = even_dimension(plan.width)
		self.height = even_dimension(plan.height)
		self._input_args = []
		self._input_files = []
		self._chains = []
		self._stream_pads = {}

	#============================
	def build(self, output_file: str) -> RenderCommand:
		self._input_args = []
		self._input_files = []
		self._chains = []
		self._stream_pads = {}
		self._add_input(['-i', self.inputs.source_video], self.inputs.source_video)
		self._plan_shared_streams()
		for segment in self.plan.video_segments:
			self._chains.extend(self._video_chain(segment))
		for segment in self.plan.audio_segments:
			self._chains.extend(self._audio_chain(segment))
		self._chains.append(self._concat_chain(self.plan.video_concat))
		self._chains.append(self._concat_chain(self.plan.audio_concat))
		filter_complex = ";".join(self._chains)
		total = self.plan.video_duration
		args = [self.settings.ffmpeg_bin, '-y', '-hide_banner', '-nostdin']
		args += self._input_args
		args += ['-filter_complex', filter_complex]
		args += ['-map', f"[{self.plan.video_concat.output}]"]
		args += ['-map', f"[{self.plan.audio_concat.output}]"]
		args += ['-c:v', self.settings.video_codec]
		args += ['-preset', self.settings.preset, '-crf', str(self.settings.crf)]
		args += ['-pix_fmt', self.settings.pixel_format]
		args += ['-r', str(self.plan.fps)]
		args += ['-c:a', self.settings.audio_codec, '-b:a', self.settings.audio_bitrate]
		args += ['-ar', str(self.settings.sample_rate)]
		args += ['-ac', str(self.settings.channels)]
		args += ['-t', utils.seconds_text(total)]
		args += ['-movflags', '+faststart', output_file]
		command = RenderCommand(args=args, filter_complex=filter_complex,
			output_file=output_file, total_seconds=float(total),
			input_files=list(self._input_files))
		return command

	#============================
	def _add_input(self, input_args: list, input_file: str) -> int:
		index = len(self._input_files)
		self._input_args.extend(input_args)
		self._input_files.append(input_file)
		return index

	#============================
	def _plan_shared_streams(self) -> None:
		"""
		Register every input stream and split the ones used more than once.
		"""
		usage = {}
		for segment in self.plan.video_segments:
			if segment.kind == 'trim':
				usage.setdefault('0:v', []).append(segment.name)
			if segment.overlay is not None:
				usage.setdefault('overlay', []).append(f"{segment.name}_overlay")
		for segment in self.plan.audio_segments:
			for item in segment.slices:
				key = '0:a' if item.track == 'voice' else 'music'
				usage.setdefault(key, []).append(f"{segment.name}_{item.track}")
		if 'overlay' in usage:
			if self.inputs.overlay_still is None:
				raise RenderError("plan uses a chart overlay but no chart was prepared")
			index = self._add_input(['-i', self.inputs.overlay_still],
				self.inputs.overlay_still)
			usage[f"{index}:v"] = usage.pop('overlay')
		if 'music' in usage:
			if self.inputs.music is None:
				raise RenderError("plan uses background audio but none was resolved")
			music_args = ['-i', self.inputs.music]
			if self.inputs.loop_music:
				music_args = ['-stream_loop', '-1'] + music_args
			index = self._add_input(music_args, self.inputs.music)
			usage[f"{index}:a"] = usage.pop('music')
		for stream, users in usage.items():
			if len(users) == 1:
				self._stream_pads[users[0]] = f"[{stream}]"
				continue
			split_filter = 'asplit' if stream.endswith(':a') else 'split'
			tag = stream.replace(':', '_')
			labels = [f"s{tag}_{number}" for number in range(len(users))]
			self._chains.append(
				f"[{stream}]{split_filter}={len(users)}" + "".join(f"[{label}]" for label in labels)
			)
			for user, label in zip(users, labels):
				self._stream_pads[user] = f"[{label}]"

	#============================
	def _frame_filters(self) -> str:
		return (
			f"fps={self.plan.fps},scale={self.width}:{self.height},setsar=1,"
			f"format={self.settings.pixel_format}"
		)

	#============================
	def _video_chain(self, segment: models.VideoSegment) -> list:
		if segment.kind == 'still':
			if self.inputs.fullframe_still is None:
				raise RenderError("plan uses a chart still but no chart was prepared")
			seconds = utils.seconds_text(segment.duration)
			index = self._add_input(['-loop', '1', '-framerate', str(self.plan.fps),
				'-t', seconds, '-i', self.inputs.fullframe_still],
				self.inputs.fullframe_still)
			chain = f"[{index}:v]{self._frame_filters()},"
			chain += f"trim=duration={seconds},setpts=PTS-STARTPTS[{segment.name}]"
			return [chain]
		if segment.kind != 'trim':
			raise RenderError(f"unsupported video segment kind {segment.kind}")
		source_pad = self._stream_pads[segment.name]
		trim = (
			f"trim=start={utils.seconds_text(segment.start)}:"
			f"end={utils.seconds_text(segment.end)},setpts=PTS-STARTPTS"
		)
		if segment.overlay is None:
			return [f"{source_pad}{trim},{self._frame_filters()}[{segment.name}]"]
		overlay_pad = self._stream_pads[f"{segment.name}_overlay"]
		window_start = max(Decimal(0), segment.overlay.start - segment.start)
		window_end = min(segment.duration, segment.overlay.end - segment.start)
		(x_pos, y_pos) = self.inputs.overlay_position
		base_label = f"{segment.name}_base"
		chart_label = f"{segment.name}_chart"
		chains = []
		chains.append(f"{source_pad}{trim},scale={self.width}:{self.height},setsar=1[{base_label}]")
		chains.append(f"{overlay_pad}format=rgba[{chart_label}]")
		chains.append(
			f"[{base_label}][{chart_label}]overlay=x={x_pos}:y={y_pos}:"
			f"enable='between(t,{utils.seconds_text(window_start)},"
			f"{utils.seconds_text(window_end)})',"
			f"{self._frame_filters()}[{segment.name}]"
		)
		return chains

	#============================
	def _audio_format(self) -> str:
		return (
			f"aformat=sample_fmts=fltp:sample_rates={self.settings.sample_rate}:"
			f"channel_layouts={self.settings.audio_mode}"
		)

	#============================
	def _audio_chain(self, segment: models.AudioSegment) -> list:
		seconds = utils.seconds_text(segment.duration)
		fit = f"apad,atrim=duration={seconds},asetpts=PTS-STARTPTS"
		if segment.kind == 'silence':
			return [
				f"anullsrc=r={self.settings.sample_rate}:cl={self.settings.audio_mode},"
				f"atrim=duration={seconds},{self._audio_format()}[{segment.name}]"
			]
		if segment.kind == 'trim':
			item = segment.slices[0]
			chain = self._slice_chain(segment, item)
			if item.weight != 1.0:
				chain += f",volume={item.weight:g}"
			return [f"{chain},{fit}[{segment.name}]"]
		if segment.kind != 'mix':
			raise RenderError(f"unsupported audio segment kind {segment.kind}")
		chains = []
		labels = []
		for item in segment.slices:
			label = f"{segment.name}_{item.track}"
			chains.append(f"{self._slice_chain(segment, item)},{fit}[{label}]")
			labels.append(f"[{label}]")
		weights = " ".join(f"{item.weight:g}" for item in segment.slices)
		chains.append(
			"".join(labels) + f"amix=inputs={len(labels)}:duration=longest:"
			f"dropout_transition=0:weights='{weights}':normalize=0,"
			f"{fit}[{segment.name}]"
		)
		return chains

	#============================
	def _slice_chain(self, segment: models.AudioSegment,
		item: models.AudioSlice) -> str:
		source_pad = self._stream_pads[f"{segment.name}_{item.track}"]
		return (
			f"{source_pad}atrim=start={utils.seconds_text(item.start)}:"
			f"end={utils.seconds_text(item.end)},asetpts=PTS-STARTPTS,"
			f"{self._audio_format()}"
		)

	#============================
	def _concat_chain(self, step: models.ConcatStep) -> str:
		pads = "".join(f"[{name}]" for name in step.inputs)
		if len(step.inputs) == 1:
			passthrough = 'null' if step.media == 'video' else 'anull'
			return f"{pads}{passthrough}[{step.output}]"
		if step.media == 'video':
			return f"{pads}concat=n={len(step.inputs)}:v=1:a=0[{step.output}]"
		return f"{pads}concat=n={len(step.inputs)}:v=0:a=1[{step.output}]"
