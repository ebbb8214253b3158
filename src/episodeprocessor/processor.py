"""
Episode Processor - Main Orchestrator.

Builds and runs the task tree for one recording:
1. Pre-run checklist (tools, input, output folder, S3 state, plan, confirmation)
2. Cut the parts and render every published format, uploading as they finish
3. Post the result listing to Discord
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import aiofiles
import aiofiles.os

from .config import ProcessorConfig
from .context import RunContext, UploadLedger
from .duration import format_duration
from .encode_queue import EncoderQueues, ExecutionQueue
from .errors import ChecklistError, InvalidPlanError
from .ffmpeg import output_encoding_args, part_encoding_args, probe_duration, probe_source, tool_version
from .logger import get_logger
from .notifier import DiscordWebhook
from .planner import Format, Part, plan_parts
from .runner import ProcessRunner
from .status import StatusReporter
from .storage import ObjectStore, format_upload_progress, join_s3_path
from .tasks import Task, TaskState


def uploading(context: RunContext) -> bool:
    return context.uploading


def uploading_raw(context: RunContext) -> bool:
    return context.uploading and context.upload_raw


class EpisodeProcessor:
    """
    Turns one recording into published parts.

    Collaborators can be injected; by default they are built from the config.
    """

    def __init__(
        self,
        config: ProcessorConfig,
        notifier=None,
        store: Optional[ObjectStore] = None,
        runner: Optional[ProcessRunner] = None,
        prober: Optional[Callable[[str], Awaitable[dict]]] = None,
        tool_check: Optional[Callable[[str], Awaitable[str]]] = None,
        confirm: Optional[Callable[[str], Awaitable[bool]]] = None,
        post_delay: float = 0.5
    ):
        self.config = config
        self._logger = get_logger('processor')

        self._owns_notifier = notifier is None
        self.notifier = notifier if notifier is not None else DiscordWebhook(
            config.discord.webhook,
            config.discord.ping
        )

        self.upload = config.upload
        self.store = store
        if self.upload is not None:
            self.private_prefix = join_s3_path(self.upload.private.prefix, config.output_base)
            self.public_prefix = join_s3_path(self.upload.public.prefix, config.output_base)
            if self.store is None:
                self.store = ObjectStore(self.upload.options, episode=config.output_base)

        self.runner = runner or ProcessRunner()
        self.prober = prober or probe_source
        self.tool_check = tool_check or tool_version
        self.confirm = confirm or self._prompt_confirmation
        self.post_delay = post_delay

        self.queues = EncoderQueues.from_limits(config.parallel.video, config.parallel.audio)
        self.reporters: List[StatusReporter] = []

        self.context = RunContext(
            uploading=self.upload is not None,
            upload_raw=self.upload is not None and self.upload.upload_raw,
        )
        self.tasks = self.populate_tasks()

    async def run(self) -> int:
        """
        Run every task.

        Returns:
            Process exit code: 0 when everything completed, 1 otherwise.
        """
        self._logger.info(f"Processing {self.config.source} into {self.config.output_base}")

        if self._owns_notifier:
            await self.notifier.connect()
        try:
            state = await self.tasks.run(self.context)
        finally:
            if self._owns_notifier:
                await self.notifier.close()

        webhook_errors = list(self.notifier.errors)
        for reporter in self.reporters:
            webhook_errors.extend(reporter.errors)
        if webhook_errors:
            self._logger.error(f"Webhook had {len(webhook_errors)} errors, showing first 5")
            for error in webhook_errors[:5]:
                self._logger.error(f"  {error}")

        if state is not TaskState.COMPLETED:
            for task in self.tasks.failures():
                self._logger.error(f"{task.path}: {task.error}")
            self._logger.error("Processing failed")
            return 1

        self._logger.info(f"Finished processing {self.config.output_base}")
        return 0

    def populate_tasks(self) -> Task:
        return Task(self.config.output_base, children=[
            Task('Pre-run Checklist', children=self.checklist()),
            Task('Processing', children=[
                Task('Notifying discord of start', self._notify_start),
                Task('Create local folders', self._create_folders),
                Task(
                    'Generate Cuts',
                    children=self.cut_tasks,
                    concurrent=True,
                    reporter=self._reporter(),
                ),
                Task(
                    'Generate published files',
                    children=self.published_tasks,
                    concurrent=True,
                    reporter=self._reporter(),
                ),
            ], rollback=self._notify_failure),
            Task('Write manifest', self._write_manifest),
            Task('Post result to discord', self.result_to_webhook),
        ])

    def _reporter(self) -> StatusReporter:
        reporter = StatusReporter(self.notifier, interval=self.config.status_interval)
        self.reporters.append(reporter)
        return reporter

    # Checklist

    def checklist(self) -> List[Task]:
        return [
            Task('Environment: ffmpeg installed', self._tool_checker('ffmpeg')),
            Task('Environment: ffprobe installed', self._tool_checker('ffprobe')),
            Task('Input file exists', self._check_input),
            Task("Output folder doesn't exist", self._check_output_folder),
            Task('Check S3 access', self._check_buckets, enabled=uploading),
            Task('S3: no files in private', self._prefix_checker('private'), enabled=uploading),
            Task('S3: no files in public', self._prefix_checker('public'), enabled=uploading),
            Task('Input: ffprobe analyse', self._analyse_input),
            Task('Plan', self._plan),
            Task('User confirmation', self._confirm),
        ]

    def _tool_checker(self, executable: str):
        async def check(context: RunContext, task: Task) -> None:
            version = await self.tool_check(executable)
            task.output = version.strip().splitlines()[0] if version.strip() else executable
        return check

    async def _check_input(self, context: RunContext, task: Task) -> None:
        if not await aiofiles.os.path.isfile(self.config.source):
            raise ChecklistError(f"Input file {self.config.source} not found")

    async def _check_output_folder(self, context: RunContext, task: Task) -> None:
        if await aiofiles.os.path.exists(self.config.output_dir):
            raise ChecklistError(f"Folder {self.config.output_dir} already exists locally")

    async def _check_buckets(self, context: RunContext, task: Task) -> None:
        names = await self.store.bucket_names()
        if self.upload.private.bucket not in names:
            raise ChecklistError('Private bucket not found')
        if self.upload.public.bucket not in names:
            raise ChecklistError('Public bucket not found')

    def _prefix_checker(self, visibility: str):
        async def check(context: RunContext, task: Task) -> None:
            bucket = getattr(self.upload, visibility).bucket
            prefix = self.private_prefix if visibility == 'private' else self.public_prefix

            count, sample = await self.store.count_objects(bucket, prefix)
            if count > 0:
                raise ChecklistError(
                    f"{visibility.capitalize()} bucket already has {count} files starting with {prefix}\n\n"
                    + ", ".join(sample)
                )
        return check

    async def _analyse_input(self, context: RunContext, task: Task) -> None:
        context.probe = await self.prober(self.config.source)
        task.output = f"Duration: {format_duration(probe_duration(context.probe))}"

    async def _plan(self, context: RunContext, task: Task) -> None:
        duration = probe_duration(context.probe)
        plan = plan_parts(
            duration,
            self.config.cuts,
            self.config.parts,
            output_base=self.config.output_base,
            start=self.config.start,
            end=self.config.end,
            validate=False,
        )

        summary = self.summary(duration, plan.summary())
        task.output = summary

        plan.validate()
        if not plan.parts:
            raise InvalidPlanError("Plan has no parts (every part disabled?)")

        context.plan = plan
        context.summary = summary

    def summary(self, duration: float, parts_summary: str) -> str:
        lines = [
            f"Input file: {self.config.source} ({format_duration(duration)})",
            f"Output folder (local): {self.config.output_dir}/",
        ]
        if self.upload is not None:
            lines.append(f"Output prefix (private): {self.private_prefix}/")
            lines.append(f"Output prefix (public): {self.public_prefix}/")
        else:
            lines.append("No upload")
        lines.append("")
        lines.append(parts_summary)
        return "\n".join(lines)

    async def _confirm(self, context: RunContext, task: Task) -> None:
        if self.config.force:
            task.output = "Confirmation skipped (--force)"
            return
        if not await self.confirm(context.summary):
            raise ChecklistError('Cancelled by user')

    async def _prompt_confirmation(self, summary: str) -> bool:
        answer = await asyncio.to_thread(input, f"{summary}\n\nConfirm this looks good [y/N] ")
        return answer.strip().lower() in ('y', 'yes')

    # Processing

    async def _notify_start(self, context: RunContext, task: Task) -> None:
        await self.notifier.send(':star: Started processing', context.summary)

    async def _notify_failure(self, context: RunContext, task: Task) -> None:
        failures = task.failures()
        log = "\n".join(f"{failed.title}: {failed.error}" for failed in failures[:5]) or None
        await self.notifier.send(
            ':x: Processing error, manual intervention required.',
            log,
            ping=True,
        )

    async def _create_folders(self, context: RunContext, task: Task) -> None:
        context.uploads = UploadLedger.for_plan(context.plan, self.config.formats)

        await aiofiles.os.mkdir(self.config.output_dir)
        await aiofiles.os.mkdir(self.config.parts_dir)

    def part_location(self, part: Part) -> Path:
        return self.config.parts_dir / f"{part.filename}.mp4"

    def cut_tasks(self, context: RunContext) -> List[Task]:
        tasks = [Task('Upload source', self._upload_source, enabled=uploading_raw)]
        tasks.extend(self._cut_task(part) for part in context.plan.parts)
        return tasks

    def _cut_task(self, part: Part) -> Task:
        local_location = str(self.part_location(part))
        queue = self.queues.video
        args = part_encoding_args(
            part,
            self.config.source,
            local_location,
            self.config.hw_enc,
            self.config.part_encoding,
        )

        async def upload(context: RunContext, task: Task) -> None:
            bucket = self.upload.private.bucket
            key = join_s3_path(self.private_prefix, f"{part.filename}.mp4")

            task.output = await self.store.put(
                bucket, key, local_location,
                progress=self._progress(task),
            )
            context.uploads.for_part(part).location = await self.store.presign(bucket, key)

        return Task(part.filename, children=[
            Task('Wait for encoder slot', self._wait_for_slot(queue)),
            Task('Encode cut', self._encoder(queue, args)),
            Task('Upload', upload, enabled=uploading),
        ])

    async def _upload_source(self, context: RunContext, task: Task) -> None:
        source_name = Path(self.config.source).name
        task.title = f"{task.title} {source_name}"

        bucket = self.upload.private.bucket
        key = join_s3_path(self.private_prefix, 'source', source_name)

        task.output = await self.store.put(
            bucket, key, self.config.source,
            progress=self._progress(task),
        )
        context.uploads.raw.name = source_name
        context.uploads.raw.location = await self.store.presign(bucket, key)

    def published_tasks(self, context: RunContext) -> List[Task]:
        return [
            self._published_task(part, index, output_format)
            for part in context.plan.parts
            for index, output_format in enumerate(self.config.formats)
        ]

    def _published_task(self, part: Part, index: int, output_format: Format) -> Task:
        filename = output_format.filename(part.filename)
        output_location = str(self.config.output_dir / filename)
        queue = self.queues.for_type(output_format.type)
        args = output_encoding_args(
            output_format,
            str(self.part_location(part)),
            output_location,
            self.config.hw_enc,
        )

        async def upload(context: RunContext, task: Task) -> None:
            key = join_s3_path(self.public_prefix, filename)
            location = await self.store.put(
                self.upload.public.bucket, key, output_location,
                public=True,
                progress=self._progress(task),
            )
            task.output = location
            context.uploads.for_part(part).outputs[index].location = location

        return Task(filename, children=[
            Task('Wait for encoder slot', self._wait_for_slot(queue)),
            Task('Encode', self._encoder(queue, args)),
            Task('Upload', upload, enabled=uploading),
        ])

    def _wait_for_slot(self, queue: ExecutionQueue):
        async def wait(context: RunContext, task: Task) -> None:
            await queue.acquire()
        return wait

    def _encoder(self, queue: ExecutionQueue, args: List[str]):
        async def encode(context: RunContext, task: Task) -> None:
            try:
                await self.runner.run(args, task)
            finally:
                queue.release()
        return encode

    @staticmethod
    def _progress(task: Task):
        def update(loaded: int, total: int) -> None:
            task.output = format_upload_progress(loaded, total)
        return update

    # Results

    async def _write_manifest(self, context: RunContext, task: Task) -> None:
        path = self.config.output_dir / 'manifest.json'
        data = {
            'source': self.config.source,
            'output_base': self.config.output_base,
            'summary': context.summary,
            'uploads': context.uploads.to_dict(),
            'finished_at': datetime.now().isoformat(),
        }

        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False))
        task.output = str(path)

    async def result_to_webhook(self, context: RunContext, task: Task) -> None:
        output_base = self.config.output_base

        if self.upload is None:
            await self.notifier.send({
                'content': f":tada: Finished processing {output_base}\n\nThis run was local only.",
            })
            return

        uploads = context.uploads
        await self.notifier.send({
            'content': f":tada: Finished processing {output_base}\n\n"
                       f"Listing private files: (Signed url accessible for 7 days)",
            'embeds': [{
                'title': f"Source file ({uploads.raw.name})",
                'url': uploads.raw.location,
            }] if uploads.raw.location else [],
        })
        await asyncio.sleep(self.post_delay)

        # Parts
        await self.notifier.send({
            'embeds': [
                {'title': entry.part.filename, 'url': entry.location}
                for entry in uploads.parts[:10]
            ],
        })
        await asyncio.sleep(self.post_delay)

        # Outputs
        await self.notifier.send({
            'content': 'Publically available files:',
            'embeds': [
                {
                    'title': entry.part.filename,
                    'fields': [
                        {'name': output.name, 'value': output.location}
                        for output in entry.outputs[:25]
                    ],
                }
                for entry in uploads.parts[:10]
            ],
        })
        await asyncio.sleep(self.post_delay)

        await self.notifier.send(':white_check_mark: Listing complete', ping=True)
