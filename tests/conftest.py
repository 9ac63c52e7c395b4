from __future__ import annotations

import json
import sys
import textwrap
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from buildbox.conversation import ConversationLog, InMemoryStorage  # noqa: E402
from buildbox.models.llm_client import LLMClient, LLMTransportError  # noqa: E402
from buildbox.planning import PlanExecutor, PlanGenerator  # noqa: E402
from buildbox.session import AssistantSession  # noqa: E402
from buildbox.workspace.files import FileStore  # noqa: E402

Reply = Union[str, Exception, Callable[[Dict[str, Any]], str]]


def plan_json(goal: str = "Add greeting", files: Optional[List[Dict[str, Any]]] = None, **extra: Any) -> str:
    """Serialise a plan payload the way the completion service would."""
    payload: Dict[str, Any] = {
        "goal": goal,
        "explanation": f"Plan for {goal}",
        "files": files if files is not None else [],
        "dependencies": [],
        "steps": [],
    }
    payload.update(extra)
    return json.dumps(payload)


class ScriptedClient(LLMClient):
    """Completion client that replays canned replies and records every payload."""

    def __init__(self, *replies: Reply) -> None:
        super().__init__("scripted-model")
        self._replies: List[Reply] = list(replies)
        self.payloads: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.payloads)

    def _raw_invoke(self, payload: Dict[str, Any], timeout: float) -> str:
        with self._lock:
            self.payloads.append(payload)
            if not self._replies:
                raise LLMTransportError("No scripted reply left.")
            reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(payload)
        return reply


@dataclass(slots=True)
class SessionHarness:
    session: AssistantSession
    client: ScriptedClient
    storage: InMemoryStorage
    log: ConversationLog


@pytest.fixture()
def sample_store() -> FileStore:
    return FileStore.from_contents(
        {
            "src/app.js": "console.log('hello');\n",
            "README.md": "# Demo\n",
        }
    )


@pytest.fixture()
def make_session(sample_store: FileStore) -> Callable[..., SessionHarness]:
    def _factory(
        *replies: Reply,
        store: Optional[FileStore] = None,
        executor: Optional[PlanExecutor] = None,
    ) -> SessionHarness:
        client = ScriptedClient(*replies)
        storage = InMemoryStorage()
        log = ConversationLog(storage, "test-session")
        session = AssistantSession(
            PlanGenerator(client),
            log,
            store if store is not None else sample_store,
            executor=executor,
        )
        return SessionHarness(session=session, client=client, storage=storage, log=log)

    return _factory


@pytest.fixture()
def tiny_repo(tmp_path: Path) -> Path:
    """Create a small working tree plus an offline configuration for CLI runs."""

    repo_root = tmp_path / "tiny-repo"
    (repo_root / "src").mkdir(parents=True)
    (repo_root / "src" / "app.py").write_text(
        textwrap.dedent(
            """
            def greet(name: str) -> str:
                return f"hello {name}"
            """
        ).lstrip(),
        encoding="utf-8",
    )
    (repo_root / "README.md").write_text("# Tiny repo\n", encoding="utf-8")
    (repo_root / "config.yaml").write_text(
        textwrap.dedent(
            """
            project:
              repo_root: .
            models:
              default: gpt-5-offline
            session:
              id: cli-test
            paths:
              data: data
              db_path: data/buildbox.sqlite
              logs: data/logs
            push:
              mode: directory
            """
        ).lstrip(),
        encoding="utf-8",
    )
    return repo_root
