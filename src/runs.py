"""Run manager: owns the run registry, the waiter coordinator and the live streams.

Every tool operation lives here as a method returning a JSON-ready dict.
Unknown run ids and wrong-state requests come back as ``{"error": ...}``
payloads; only start failures raise.
"""

import asyncio
import logging
from dataclasses import asdict, replace

from src.client import WisepanelClient
from src.errors import PublishError, StartError
from src.event_log import EventLog
from src.events import AgentResponseEvent, AgentsCreatedEvent, ConnectionEvent, Event, parse_event
from src.models import PollSnapshot, StreamOptions
from src.output import format_agent_response, format_final_result, model_label
from src.waiters import WaiterCoordinator

logger = logging.getLogger(__name__)

PUBLISH_HINT = (
    "Ask the user if they'd like to publish this deliberation to the "
    "Wisepanel Commons (wisepanel.ai/commons)."
)


def _not_found(run_id: str) -> dict:
    return {"error": f"Run {run_id} not found. It may have been started in a previous session."}


def project_event(event: Event) -> dict:
    """Poll-response shape of one event. Agent responses get a markdown summary."""
    if isinstance(event, AgentResponseEvent):
        return {
            "type": event.type,
            "agent": event.agent,
            "role": event.role,
            "model": model_label(event.provider, event.model),
            "summary": format_agent_response(event),
        }
    return dict(event.raw)


class RunManager:
    """Composition root for one process: a single registry shared by all tool calls."""

    def __init__(
        self,
        client: WisepanelClient,
        poll_timeout_sec: float = 15.0,
        start_timeout_sec: float = 30.0,
        max_rounds: int = 5,
    ) -> None:
        self._client = client
        self.poll_timeout_sec = poll_timeout_sec
        self.start_timeout_sec = start_timeout_sec
        self.max_rounds = max_rounds
        self.log = EventLog()
        self.waiters = WaiterCoordinator(self.log)
        self._streams: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()

    def _clamp_rounds(self, options: StreamOptions) -> StreamOptions:
        if options.rounds is None:
            return options
        return replace(options, rounds=max(1, min(int(options.rounds), self.max_rounds)))

    async def start(self, options: StreamOptions) -> dict:
        """Start a deliberation and return once the panel exists.

        Resolves on the ``agents_created`` event, when the stream ends, or after
        ``start_timeout_sec`` if a run id was confirmed by then.

        Raises:
            StartError: If the stream fails before the panel is created, or no
                run id is confirmed in time.
        """
        options = self._clamp_rounds(options)
        loop = asyncio.get_running_loop()
        started: asyncio.Future[dict] = loop.create_future()
        run_id: str | None = None

        def on_event(payload: dict) -> None:
            nonlocal run_id
            event = parse_event(payload)
            if event is None:
                return
            if run_id is None and isinstance(event, ConnectionEvent) and event.run_id:
                # creation precedes forwarding of the confirming event itself
                run_id = event.run_id
                self.log.create_run(run_id)
                self._streams[run_id] = task
            if run_id is None:
                logger.debug("Ignoring %s event before run confirmation", event.type_tag)
                return
            self.log.add_event(run_id, event)

            if isinstance(event, AgentsCreatedEvent) and not started.done():
                info = self.log.get_run_info(run_id)
                started.set_result({
                    "run_id": run_id,
                    "estimated_cost": info.estimated_cost,
                    "agents": info.agents_total,
                    "status": "running",
                })

        def on_done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if run_id is not None:
                self._streams.pop(run_id, None)

            if t.cancelled():
                if run_id is not None and self.log.get_run_info(run_id).status == "running":
                    self.log.set_status(run_id, "canceled")
                if not started.done():
                    started.set_exception(StartError("Deliberation start was canceled"))
                return

            exc = t.exception()
            if exc is not None:
                logger.warning("Stream for run %s failed: %s", run_id or "<unconfirmed>", exc)
                if run_id is not None and self.log.get_run_info(run_id).status == "running":
                    self.log.set_status(run_id, "failed")
                if not started.done():
                    started.set_exception(StartError(f"Stream failed: {exc}"))
                return

            if run_id is not None and self.log.get_run_info(run_id).status == "running":
                logger.warning("Stream for run %s ended without a terminal event", run_id)
                self.log.set_status(run_id, "failed")
            if not started.done():
                if run_id is None:
                    started.set_exception(StartError("Stream ended before a run was confirmed"))
                else:
                    started.set_result({"run_id": run_id, "status": self.log.get_result(run_id).status})

        task = asyncio.create_task(self._client.start_stream(options, on_event))
        self._tasks.add(task)
        task.add_done_callback(on_done)

        try:
            return await asyncio.wait_for(started, timeout=self.start_timeout_sec)
        except TimeoutError:
            if run_id is not None:
                logger.info("Run %s confirmed but panel not created yet; returning early", run_id)
                return {"run_id": run_id, "status": "running"}
            task.cancel()
            raise StartError("Timed out waiting for deliberation to start") from None

    async def next_events(self, run_id: str) -> PollSnapshot | None:
        """Long-poll: wait for news (bounded), then take everything past the cursor."""
        await self.waiters.wait_for_events(run_id, self.poll_timeout_sec)
        return self.log.get_new_events(run_id)

    async def poll(self, run_id: str) -> dict:
        if not self.log.has(run_id):
            return _not_found(run_id)
        snapshot = await self.next_events(run_id)
        response: dict = {
            "status": snapshot.status,
            "agents_responded": snapshot.agents_responded,
            "agents_total": snapshot.agents_total,
            "new_events": [project_event(e) for e in snapshot.new_events],
        }
        if snapshot.status == "completed":
            response["publish_available"] = True
            response["publish_hint"] = PUBLISH_HINT
        return response

    def result(self, run_id: str) -> dict:
        result = self.log.get_result(run_id)
        if result is None:
            return {"error": f"Run {run_id} not found."}
        if result.status == "running":
            return {"error": "Run still in progress. Use wisepanel_poll to check status.", "status": result.status}
        if result.status == "failed":
            return {"error": "Run failed.", "status": result.status}
        if result.status == "canceled":
            return {"error": "Run was canceled.", "status": result.status}
        if result.result is None:
            return {"error": "No result available.", "status": result.status}
        return {"status": result.status, "markdown": format_final_result(result.result)}

    async def cancel(self, run_id: str) -> dict:
        task = self._streams.pop(run_id, None)
        if task is None and not self.log.has(run_id):
            return _not_found(run_id)
        if task is not None:
            task.cancel()

        try:
            await self._client.cancel_run(run_id)
        except Exception as exc:
            logger.info("Upstream cancel for run %s failed (it may already be done): %s", run_id, exc)

        # finished runs keep their status
        info = self.log.get_run_info(run_id)
        if info is not None and info.status == "running":
            self.log.set_status(run_id, "canceled")
        return {"canceled": True, "run_id": run_id}

    async def publish(self, run_id: str) -> dict:
        info = self.log.get_run_info(run_id)
        if info is None:
            return _not_found(run_id)
        if info.status == "running":
            return {"error": "Run still in progress. Wait for it to complete before publishing.", "status": info.status}
        if info.status == "failed":
            return {"error": "Run failed. Cannot publish a failed deliberation.", "status": info.status}
        if info.status == "canceled":
            return {"error": "Run was canceled. Cannot publish a canceled deliberation.", "status": info.status}

        data = self.log.get_publish_data(run_id)
        if data is None:
            return {"error": "Could not extract publish data from run. The run may not have completed properly."}

        try:
            published = await self._client.publish_to_commons(data)
        except PublishError as err:
            details = err.details or {}
            if err.status_code == 422 or err.code == "moderation_failed":
                return {
                    "error": "Content moderation rejected this deliberation. The topic or responses "
                             "may contain content that violates community guidelines.",
                    "code": "moderation_failed",
                    "details": details.get("reasons") or details.get("message"),
                }
            if err.status_code == 409:
                return {
                    "error": "This deliberation has already been published.",
                    "code": "already_published",
                    "details": details.get("url"),
                }
            return {"error": str(err), "code": err.code}
        except Exception as exc:
            logger.warning("Publish of run %s failed: %s", run_id, exc)
            return {"error": f"Publish failed: {exc}"}

        logger.info("Run %s published to %s", run_id, published.url)
        return {
            "published": True,
            "url": published.url,
            "slug": published.slug,
            "existing": published.existing,
        }

    def list_runs(self) -> dict:
        runs = [asdict(r) for r in self.log.list_runs()]
        if not runs:
            return {"runs": [], "message": "No Wisepanel deliberations in this session."}
        return {"runs": runs}

    async def aclose(self) -> None:
        """Abort every live stream. Called once at process shutdown."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._streams.clear()
