#!/usr/bin/env python3

import argparse
import json
import logging
import shutil
import sys
import yaml
from rich.logging import RichHandler
from tqdm import tqdm
from castmixlib.core import config
from castmixlib.core import utils
from castmixlib.core.errors import CastmixError
from castmixlib.core.job import CompositionJob
from castmixlib.core.loader import RequestLoader
from castmixlib.media.blobstore import HttpBlobStore

#============================================

def parse_args():
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(
		description="Composite a commentary video with a chart and background audio")
	parser.add_argument('-r', '--request', dest='request_file', required=True,
		help='yaml or json request with video, chart, audio, policy and delivery')
	parser.add_argument('-C', '--config', dest='config_file',
		help='yaml file with default render settings')
	parser.add_argument('-o', '--output', dest='output_file',
		help='also copy the rendered video to this path')
	parser.add_argument('-j', '--response-file', dest='response_file',
		help='write the json response here instead of stdout')
	parser.add_argument('-p', '--dump-plan', dest='dump_plan', action='store_true',
		help='resolve, probe and plan only, then print the plan as yaml')
	parser.add_argument('-c', '--cache-dir', dest='cache_dir',
		help='parent directory for per-job temporary files')
	parser.add_argument('-k', '--keep-temp', dest='keep_temp',
		help='keep temporary render files', action='store_true')
	parser.add_argument('-K', '--no-keep-temp', dest='keep_temp',
		help='remove temporary render files', action='store_false')
	parser.add_argument('-t', '--timeout', dest='render_timeout', type=float,
		help='render timeout in seconds')
	parser.add_argument('--blob-url', dest='blob_url',
		help='object store base url for uploaded delivery')
	parser.add_argument('--blob-token', dest='blob_token',
		help='bearer token for the object store')
	parser.add_argument('-q', '--quiet', dest='quiet', action='store_true',
		help='no command echo or progress bar')
	parser.add_argument('-d', '--debug', dest='debug', action='store_true',
		help='debug logging')
	parser.set_defaults(keep_temp=None)
	args = parser.parse_args()
	return args

#============================================

def setup_logging(debug: bool, quiet: bool) -> None:
	level = logging.INFO
	if debug:
		level = logging.DEBUG
	elif quiet:
		level = logging.WARNING
	logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]",
		handlers=[RichHandler(rich_tracebacks=True, show_path=debug)])

#============================================

class ProgressBar():
	def __init__(self):
		self.bar = None

	#============================
	def __call__(self, percent: float, seconds: float) -> None:
		if self.bar is None:
			self.bar = tqdm(total=100, unit='%', desc='render',
				bar_format='{l_bar}{bar}| {n:.0f}/{total:.0f}%')
		self.bar.update(percent - self.bar.n)

	#============================
	def close(self) -> None:
		if self.bar is not None:
			self.bar.close()

#============================================

def write_response(response: dict, response_file: str) -> None:
	text = json.dumps(response, indent=2)
	if response_file is None:
		print(text)
		return
	with open(response_file, 'w') as handle:
		handle.write(text)
		handle.write("\n")

#============================================

def main():
	args = parse_args()
	setup_logging(args.debug, args.quiet)
	utils.set_quiet_mode(args.quiet)
	overrides = {
		'keep_temp': args.keep_temp,
		'cache_dir': args.cache_dir,
		'render_timeout': args.render_timeout,
	}
	try:
		base_settings = None
		if args.config_file is not None:
			base_settings = config.load_settings_file(args.config_file)
		request = RequestLoader(args.request_file, settings=base_settings,
			setting_overrides=overrides).load()
	except CastmixError as error:
		write_response(error.to_response(), args.response_file)
		sys.exit(2)
	blob_store = None
	if args.blob_url is not None:
		blob_store = HttpBlobStore(args.blob_url, token=args.blob_token)
	progress = None
	if not args.quiet:
		progress = ProgressBar()
	with CompositionJob(request, blob_store=blob_store,
		progress_callback=progress) as job:
		if args.dump_plan:
			try:
				plan = job.plan_only()
			except CastmixError as error:
				write_response(error.to_response(), args.response_file)
				sys.exit(1)
			print(yaml.safe_dump(plan.to_dict(), sort_keys=False))
			return
		response = job.run()
		if progress is not None:
			progress.close()
		if response['status'] == 'done' and args.output_file is not None:
			shutil.copy(job.output_file, args.output_file)
		write_response(response, args.response_file)
	if response['status'] != 'done':
		sys.exit(1)


if __name__ == '__main__':
	main()
