#!/usr/bin/env python3

from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction

#============================================

ASSET_KINDS = ('video', 'image', 'audio')
SOURCE_FORMS = ('url', 'inline', 'path')
DELIVERY_MODES = ('inline', 'uploaded')

#============================================

@dataclass
class MediaAsset():
	role: str
	kind: str
	source_form: str
	value: str
	resolved_path: str = None
	size_bytes: int = None
	mime_type: str = None

	#============================
	@property
	def is_resolved(self) -> bool:
		return self.resolved_path is not None

#============================================

@dataclass(frozen=True)
class MediaProfile():
	duration_seconds: Decimal
	has_audio: bool
	width: int
	height: int
	frame_rate_hint: Fraction = None

#============================================

@dataclass(frozen=True)
class OverlayWindow():
	start: Decimal
	end: Decimal

#============================================

@dataclass(frozen=True)
class BreakWindow():
	start: Decimal
	duration: Decimal

#============================================

@dataclass(frozen=True)
class MixWeights():
	voice: float = 1.0
	music: float = 0.25

#============================================

@dataclass
class CompositionPolicy():
	overlay_window: OverlayWindow = field(
		default_factory=lambda: OverlayWindow(Decimal(0), Decimal(5)))
	break_window: BreakWindow = None
	background_audio: MediaAsset = None
	mix_weights: MixWeights = field(default_factory=MixWeights)
	overlay_position: tuple = (10, 10)
	overlay_scale: float = None
	chart_fit: str = 'contain'
	chart_background: str = '#000000'
	loop_background: bool = True

#============================================

@dataclass(frozen=True)
class AudioSlice():
	track: str
	start: Decimal
	end: Decimal
	weight: float = 1.0

	#============================
	@property
	def duration(self) -> Decimal:
		return self.end - self.start

#============================================

@dataclass(frozen=True)
class VideoSegment():
	name: str
	kind: str
	duration: Decimal
	start: Decimal = None
	end: Decimal = None
	overlay: OverlayWindow = None

	#============================
	def to_dict(self) -> dict:
		data = {'name': self.name, 'kind': self.kind,
			'duration': float(self.duration)}
		if self.kind == 'trim':
			data['start'] = float(self.start)
			data['end'] = float(self.end)
		if self.overlay is not None:
			data['overlay'] = {'start': float(self.overlay.start),
				'end': float(self.overlay.end)}
		return data

#============================================

@dataclass(frozen=True)
class AudioSegment():
	name: str
	kind: str
	duration: Decimal
	slices: tuple = ()

	#============================
	def to_dict(self) -> dict:
		data = {'name': self.name, 'kind': self.kind,
			'duration': float(self.duration)}
		if len(self.slices) > 0:
			data['slices'] = [
				{'track': item.track, 'start': float(item.start),
					'end': float(item.end), 'weight': item.weight}
				for item in self.slices
			]
		return data

#============================================

@dataclass(frozen=True)
class ConcatStep():
	output: str
	inputs: tuple
	media: str

#============================================

@dataclass(frozen=True)
class CompositionPlan():
	video_segments: tuple
	audio_segments: tuple
	video_concat: ConcatStep
	audio_concat: ConcatStep
	width: int
	height: int
	fps: Fraction
	tolerance: Decimal = Decimal('0.040')

	#============================
	@property
	def video_duration(self) -> Decimal:
		return sum((seg.duration for seg in self.video_segments), Decimal(0))

	#============================
	@property
	def audio_duration(self) -> Decimal:
		return sum((seg.duration for seg in self.audio_segments), Decimal(0))

	#============================
	@property
	def uses_chart(self) -> bool:
		for segment in self.video_segments:
			if segment.kind == 'still' or segment.overlay is not None:
				return True
		return False

	#============================
	def uses_track(self, track: str) -> bool:
		for segment in self.audio_segments:
			for item in segment.slices:
				if item.track == track:
					return True
		return False

	#============================
	def to_dict(self) -> dict:
		return {
			'width': self.width,
			'height': self.height,
			'fps': str(self.fps),
			'video_duration': float(self.video_duration),
			'audio_duration': float(self.audio_duration),
			'video_segments': [seg.to_dict() for seg in self.video_segments],
			'audio_segments': [seg.to_dict() for seg in self.audio_segments],
			'video_concat': {'output': self.video_concat.output,
				'inputs': list(self.video_concat.inputs)},
			'audio_concat': {'output': self.audio_concat.output,
				'inputs': list(self.audio_concat.inputs)},
		}

#============================================

@dataclass
class OutputArtifact():
	form: str
	value: str
	path: str = None
	size_bytes: int = None

	#============================
	def to_dict(self) -> dict:
		return {'form': self.form, 'value': self.value}
