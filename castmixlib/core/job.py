#!/usr/bin/env python3

"""
One compositing job: resolve, probe, plan, render, publish.

Stages run strictly in order and each one fails fast with its own error
kind. The job workspace lives until the job is closed, so a failed publish
can be retried against the rendered file without rendering again.
"""

import logging
import threading
from castmixlib.core import config
from castmixlib.core import models
from castmixlib.core.errors import CastmixError
from castmixlib.core.errors import PlanningError
from castmixlib.core.errors import ProbeError
from castmixlib.core.errors import PublishError
from castmixlib.core.errors import RenderError
from castmixlib.core.errors import RenderTimeout
from castmixlib.core.errors import AssetFetchError
from castmixlib.core.loader import CompositionRequest
from castmixlib.core.planner import CompositionPlanner
from castmixlib.core.renderer import RenderExecutor
from castmixlib.core.workspace import JobWorkspace
from castmixlib.media import ffprobe
from castmixlib.media.publisher import ArtifactPublisher
from castmixlib.media.resolver import AssetResolver

logger = logging.getLogger(__name__)

JOB_STATES = ('pending', 'resolving', 'probing', 'planning', 'rendering',
	'publishing', 'done', 'failed')

# errors raised by unexpected exceptions inside a stage
STAGE_ERRORS = {
	'resolving': AssetFetchError,
	'probing': ProbeError,
	'planning': PlanningError,
	'rendering': RenderError,
	'publishing': PublishError,
}

#============================================

class CompositionJob():
	def __init__(self, request: CompositionRequest, blob_store=None,
		progress_callback=None, cancel_event: threading.Event = None):
		self.request = request
		self.settings = request.settings or config.RenderSettings()
		self.blob_store = blob_store
		self.progress_callback = progress_callback
		self.cancel_event = cancel_event
		self.workspace = JobWorkspace(cache_dir=self.settings.cache_dir,
			keep_temp=self.settings.keep_temp,
			grace_seconds=self.settings.cleanup_grace)
		self.status = 'pending'
		self.error = None
		self.profile = None
		self.music_duration = None
		self.plan = None
		self.output_file = None
		self.artifact = None

	#============================
	def _set_status(self, status: str) -> None:
		if status not in JOB_STATES:
			raise ValueError(f"unknown job status {status}")
		logger.debug(f"job status {self.status} -> {status}")
		self.status = status

	#============================
	def _run_stage(self, status: str, func, *args):
		self._set_status(status)
		if self.cancel_event is not None and self.cancel_event.is_set():
			raise RenderTimeout(f"job was cancelled before {status}",
				stage=STAGE_ERRORS[status].stage)
		try:
			return func(*args)
		except CastmixError:
			raise
		except Exception as exc:
			error_class = STAGE_ERRORS[status]
			raise error_class(f"{type(exc).__name__}: {exc}") from exc

	#============================
	def resolve(self) -> None:
		work_dir = self.workspace.create()
		resolver = AssetResolver(work_dir, fetch_timeout=self.settings.fetch_timeout)
		resolver.resolve_all(self.request.assets)

	#============================
	def probe(self) -> models.MediaProfile:
		self.profile = ffprobe.probeVideo(self.request.video.resolved_path,
			self.settings.ffprobe_bin, self.settings.probe_timeout)
		background = self.request.policy.background_audio
		if background is not None:
			self.music_duration = ffprobe.probeAudio(background.resolved_path,
				self.settings.ffprobe_bin, self.settings.probe_timeout)
			logger.debug(f"background audio is {self.music_duration}s long")
		return self.profile

	#============================
	def make_plan(self) -> models.CompositionPlan:
		fps = config.resolve_fps(self.settings, self.profile.frame_rate_hint)
		planner = CompositionPlanner(self.profile, self.request.policy, fps,
			has_chart=self.request.chart is not None,
			tolerance=self.settings.duration_tolerance)
		self.plan = planner.plan()
		if self.music_duration is not None and not self.request.policy.loop_background:
			if self.music_duration < self.plan.video_duration:
				logger.warning(f"background audio ({self.music_duration}s) is shorter "
					f"than the output ({self.plan.video_duration}s) and will not loop")
		return self.plan

	#============================
	def render(self) -> str:
		executor = RenderExecutor(self.settings, self.workspace.path,
			cancel_event=self.cancel_event,
			progress_callback=self.progress_callback)
		background = self.request.policy.background_audio
		music_file = background.resolved_path if background is not None else None
		self.output_file = executor.render(self.plan,
			self.request.video.resolved_path, self.request.chart.resolved_path,
			self.request.policy, music_file=music_file)
		return self.output_file

	#============================
	def publish(self, delivery: str = None) -> models.OutputArtifact:
		if self.output_file is None:
			raise PublishError("nothing has been rendered yet")
		if delivery is None:
			delivery = self.request.delivery
		publisher = ArtifactPublisher(self.blob_store)
		self.artifact = publisher.publish(self.output_file, delivery,
			name=self.request.output_name)
		return self.artifact

	#============================
	def plan_only(self) -> models.CompositionPlan:
		"""
		Resolve, probe and plan without rendering.
		"""
		self._run_stage('resolving', self.resolve)
		self._run_stage('probing', self.probe)
		return self._run_stage('planning', self.make_plan)

	#============================
	def run(self) -> dict:
		"""
		Run every stage and return the boundary response mapping.
		"""
		try:
			self._run_stage('resolving', self.resolve)
			self._run_stage('probing', self.probe)
			self._run_stage('planning', self.make_plan)
			self._run_stage('rendering', self.render)
			self._run_stage('publishing', self.publish)
		except CastmixError as error:
			return self._fail(error)
		self._set_status('done')
		return self.response()

	#============================
	def retry_publish(self, delivery: str = None) -> dict:
		if self.output_file is None:
			raise PublishError("publish can only be retried after a render")
		self.error = None
		try:
			self._run_stage('publishing', self.publish, delivery)
		except CastmixError as error:
			return self._fail(error)
		self._set_status('done')
		return self.response()

	#============================
	def _fail(self, error: CastmixError) -> dict:
		self.error = error
		self._set_status('failed')
		logger.error(f"job failed in {error.stage}: {error.error_kind}: {error.message}")
		return self.response()

	#============================
	def response(self) -> dict:
		if self.status == 'done':
			return {'status': 'done', 'artifact': self.artifact.to_dict()}
		if self.status == 'failed':
			return self.error.to_response()
		return {'status': self.status}

	#============================
	def close(self) -> None:
		self.workspace.cleanup()

	#============================
	def __enter__(self) -> 'CompositionJob':
		return self

	#============================
	def __exit__(self, exc_type, exc_value, traceback) -> None:
		self.close()

#============================================

def compose(request: CompositionRequest, blob_store=None,
	progress_callback=None, cancel_event: threading.Event = None) -> dict:
	with CompositionJob(request, blob_store=blob_store,
		progress_callback=progress_callback, cancel_event=cancel_event) as job:
		return job.run()
