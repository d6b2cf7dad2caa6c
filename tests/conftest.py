"""Shared fixtures for envq tests."""

import pytest

from envq.events import CommandCompleted, EventBus
from envq.models import CommandResult, Outcome


GENERAL_YAML = """\
header:
  title: Test environment
categories:
  - category:
      title: Tools
      verifications:
        - id: nodeVersion
          title: Node 15
          checkType: outputContains
          command: node --version
          expectedValue: v15.
          versionId: node
          fixCommand: nvm install 15
          fixPriority: 1
        - id: gitInstalled
          title: Git
          checkType: commandSuccess
          command: git --version
          fixCommand: brew install git
          fixPriority: 1
        - id: homeSet
          title: HOME set
          checkType: envVarExists
          variableName: HOME
"""

SECTIONS_YAML = """\
sections:
  - sectionId: backend-api
    description: Backend API
    directoryPath: ./backend-api
    verifications:
      - id: backendCloned
        title: Backend cloned
        checkType: pathExists
        pathValue: ./backend-api
        pathType: directory
        fixCommand: mkdir backend-api
        fixPriority: 2
  - sectionId: docs
    description: Docs
    skipVerification: true
  - sectionId: e2e
    description: E2E tests
    testSection: true
    verifications:
      - id: e2eReady
        title: E2E ready
        checkType: commandSuccess
        command: e2e --check
        fixCommand: e2e --install
"""


@pytest.fixture
def tmp_project(tmp_path):
    """A project with .envq/ config and both verification documents."""
    envq_dir = tmp_path / ".envq"
    envq_dir.mkdir()
    (envq_dir / "config.yaml").write_text("""\
timeouts:
  check_sec: 5
  fix_sec: 30
shell:
  path: /bin/sh
  login: false
notify:
  webhook_url: ""
""")
    (envq_dir / "verifications.yaml").write_text(GENERAL_YAML)
    (envq_dir / "sections.yaml").write_text(SECTIONS_YAML)
    return tmp_path


class FakeRunner:
    """Command runner returning canned results keyed by command string."""

    def __init__(self, results=None, default=None):
        self.results = dict(results or {})
        self.default = default or CommandResult(success=False, stderr="not found", exit_code=127)
        self.calls = []

    async def __call__(self, command):
        self.calls.append(command)
        return self.results.get(command, self.default)


class FakeExecutor:
    """Records starts and kills; tests complete instances explicitly."""

    def __init__(self, bus, complete_on_kill=False, instant=None):
        self.bus = bus
        self.started = []  # (instance_id, command, logical_id)
        self.killed = []
        self.complete_on_kill = complete_on_kill
        self.instant = dict(instant or {})  # logical id → exit code, completed inside start()
        self._n = 0

    def start(self, command, logical_id):
        self._n += 1
        instance_id = f"auto-setup-{logical_id}-{self._n}"
        self.started.append((instance_id, command, logical_id))
        if logical_id in self.instant:
            self.complete(instance_id, self.instant[logical_id])
        return instance_id

    def kill(self, instance_id):
        self.killed.append(instance_id)
        if self.complete_on_kill:
            self.complete(instance_id, -15, Outcome.STOPPED)

    def complete(self, instance_id, exit_code=0, outcome=Outcome.NORMAL):
        self.bus.publish(CommandCompleted(instance_id, outcome, exit_code))

    def instance(self, logical_id):
        """Latest instance id started for *logical_id*."""
        for instance_id, _, lid in reversed(self.started):
            if lid == logical_id:
                return instance_id
        raise KeyError(logical_id)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    """Collects every event of the given types published on *bus*."""
    events = []

    def _watch(*types):
        for t in types:
            bus.subscribe(t, events.append)
        return events

    return _watch
