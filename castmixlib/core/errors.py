#!/usr/bin/env python3

"""
Error taxonomy for compositing jobs, one kind per pipeline stage.
"""

#============================================

class CastmixError(RuntimeError):
	stage = 'unknown'

	def __init__(self, message: str, backend_trace: str = None,
		stage: str = None):
		super().__init__(message)
		self.message = message
		self.backend_trace = backend_trace
		if stage is not None:
			self.stage = stage

	#============================
	@property
	def error_kind(self) -> str:
		return type(self).__name__

	#============================
	def to_response(self) -> dict:
		response = {
			'status': 'failed',
			'stage': self.stage,
			'errorKind': self.error_kind,
			'message': self.message,
		}
		if self.backend_trace:
			response['backendTrace'] = self.backend_trace
		return response

#============================================

class RequestError(CastmixError):
	stage = 'request'

#============================================

class AssetFetchError(CastmixError):
	stage = 'resolve'

#============================================

class AssetDecodeError(CastmixError):
	stage = 'resolve'

#============================================

class ProbeError(CastmixError):
	stage = 'probe'

#============================================

class PlanningError(CastmixError):
	stage = 'plan'

	def __init__(self, message: str, invariant: str = None, **kwargs):
		super().__init__(message, **kwargs)
		self.invariant = invariant

	#============================
	def to_response(self) -> dict:
		response = super().to_response()
		if self.invariant is not None:
			response['invariant'] = self.invariant
		return response

#============================================

class RenderError(CastmixError):
	stage = 'render'

#============================================

class RenderTimeout(RenderError):
	pass

#============================================

class PublishError(CastmixError):
	stage = 'publish'

#============================================

class BlobExistsError(PublishError):
	pass
