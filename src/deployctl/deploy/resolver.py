"""Source resolution with an ordered fallback chain.

Strategies are tried in order and the first one that produces a source
tree wins:

1. requested branch over SSH
2. requested branch over HTTPS
3. the service's default branch over HTTPS (``main_fallback``)
4. a synthesized placeholder service (``synthesized_stub``)

Only a failure to write the placeholder raises ``ResolveError``.
"""

import json
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from deployctl.core.exceptions import ResolveError
from deployctl.core.logging import get_logger
from deployctl.deploy.models import ResolvedSource, SourceOrigin
from deployctl.registry import ServiceDescriptor

logger = get_logger(__name__)

LineSink = Callable[[str], None]


def _discard(line: str) -> None:
    pass


@dataclass
class CloneResult:
    """Outcome of one clone attempt."""

    ok: bool
    output: list[str] = field(default_factory=list)


class GitCloner(Protocol):
    def clone(self, url: str, ref: str, dest: Path) -> CloneResult: ...


class SubprocessGitCloner:
    """Runs ``git clone`` as a subprocess."""

    def __init__(self, timeout: int = 300, git: str = "git"):
        self.timeout = timeout
        self.git = git

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        # never block on a credential or host-key prompt
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes -o StrictHostKeyChecking=accept-new")
        return env

    def clone(self, url: str, ref: str, dest: Path) -> CloneResult:
        cmd = [self.git, "clone", "--depth", "1", "--single-branch", "--branch", ref, url, str(dest)]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._env(),
            )
        except subprocess.TimeoutExpired:
            return CloneResult(False, [f"git clone timed out after {self.timeout}s"])
        except OSError as e:
            return CloneResult(False, [f"git clone could not run: {e}"])

        output = (result.stdout + result.stderr).splitlines()
        return CloneResult(result.returncode == 0, output)


class SourceStrategy(Protocol):
    origin: SourceOrigin

    def attempt(self, service: ServiceDescriptor, branch: str, dest: Path, log: LineSink) -> str | None:
        """Produce a source tree in ``dest``; return the branch obtained or None."""
        ...


class CloneStrategy:
    """Clone one branch over one transport."""

    def __init__(self, origin: SourceOrigin, cloner: GitCloner):
        if origin == SourceOrigin.SYNTHESIZED_STUB:
            raise ValueError("CloneStrategy cannot synthesize sources")
        self.origin = origin
        self.cloner = cloner

    def _url(self, service: ServiceDescriptor) -> str:
        if self.origin == SourceOrigin.SSH:
            return service.ssh_url
        return service.https_url

    def _branch(self, service: ServiceDescriptor, requested: str) -> str:
        if self.origin == SourceOrigin.MAIN_FALLBACK:
            return service.default_branch
        return requested

    def attempt(self, service: ServiceDescriptor, branch: str, dest: Path, log: LineSink) -> str | None:
        ref = self._branch(service, branch)
        if self.origin == SourceOrigin.MAIN_FALLBACK and ref == branch:
            # same branch over the same transport already failed
            return None

        url = self._url(service)
        log(f"Cloning {service.name} ({ref}) from {url} [{self.origin.value}]")
        result = self.cloner.clone(url, ref, dest)
        for line in result.output:
            log(f"  git: {line}")
        if not result.ok:
            log(f"Clone of {ref} via {self.origin.value} failed")
            return None
        return ref


STUB_PACKAGE = {
    "name": "{name}",
    "version": "0.0.0",
    "description": "Placeholder for {name}; the real repository could not be cloned",
    "main": "src/app.js",
    "scripts": {"start": "node src/app.js"},
}

STUB_APP = """\
// Placeholder service generated by deployctl.
// The repository for {name} could not be cloned; this process only answers
// the health endpoint, and reports itself as unhealthy.
const http = require('http');

const PORT = process.env.PORT || {port};

const server = http.createServer((req, res) => {{
  res.writeHead(req.url === '{health_path}' ? 503 : 404, {{ 'Content-Type': 'application/json' }});
  res.end(JSON.stringify({{ status: 'placeholder', service: '{name}' }}));
}});

server.listen(PORT, '0.0.0.0');
process.on('SIGTERM', () => server.close(() => process.exit(0)));
"""

STUB_DOCKERFILE = """\
FROM node:20-alpine
WORKDIR /app
COPY package.json ./
COPY src ./src
USER node
EXPOSE {port}
CMD ["node", "src/app.js"]
"""


class StubStrategy:
    """Write a minimal placeholder service so the pipeline can continue."""

    origin = SourceOrigin.SYNTHESIZED_STUB

    def attempt(self, service: ServiceDescriptor, branch: str, dest: Path, log: LineSink) -> str | None:
        log(f"Synthesizing placeholder source for {service.name} in {dest}")
        values = {"name": service.name, "port": service.port, "health_path": service.health_path}
        package = {k: v.format(**values) if isinstance(v, str) else v for k, v in STUB_PACKAGE.items()}

        (dest / "src").mkdir(parents=True, exist_ok=True)
        (dest / "package.json").write_text(json.dumps(package, indent=2) + "\n")
        (dest / "src" / "app.js").write_text(STUB_APP.format(**values))
        (dest / "Dockerfile").write_text(STUB_DOCKERFILE.format(**values))
        return branch


def default_strategies(cloner: GitCloner) -> list[SourceStrategy]:
    """The standard SSH -> HTTPS -> default branch -> stub chain."""
    return [
        CloneStrategy(SourceOrigin.SSH, cloner),
        CloneStrategy(SourceOrigin.HTTPS, cloner),
        CloneStrategy(SourceOrigin.MAIN_FALLBACK, cloner),
        StubStrategy(),
    ]


class SourceResolver:
    """Obtain a working source tree for a service."""

    def __init__(
        self,
        services_dir: str | Path,
        strategies: list[SourceStrategy] | None = None,
        cloner: GitCloner | None = None,
    ):
        self.services_dir = Path(services_dir)
        self.strategies = strategies or default_strategies(cloner or SubprocessGitCloner())

    def _reset(self, dest: Path) -> None:
        if dest.exists():
            shutil.rmtree(dest)

    def resolve(
        self,
        service: ServiceDescriptor,
        requested_branch: str,
        log: LineSink = _discard,
    ) -> ResolvedSource:
        """Run the fallback chain.

        Returns:
            ResolvedSource tagged with the origin that succeeded

        Raises:
            ResolveError: if not even the placeholder could be written
        """
        dest = self.services_dir / service.name
        slog = logger.bind(service=service.name)

        for strategy in self.strategies:
            try:
                self._reset(dest)
                dest.parent.mkdir(parents=True, exist_ok=True)
                branch = strategy.attempt(service, requested_branch, dest, log)
            except OSError as e:
                if strategy.origin == SourceOrigin.SYNTHESIZED_STUB:
                    raise ResolveError(
                        f"Cannot write placeholder source for {service.name}: {e}",
                        service=service.name,
                    )
                log(f"Source attempt {strategy.origin.value} failed: {e}")
                continue

            if branch is None:
                continue

            resolved = ResolvedSource(
                service=service.name,
                source_path=dest,
                actual_branch=branch,
                origin=strategy.origin,
            )
            if strategy.origin == SourceOrigin.MAIN_FALLBACK:
                log(f"WARNING: deploying '{branch}' instead of requested '{requested_branch}'")
                slog.warning("Deploying fallback branch", requested=requested_branch, deployed=branch)
            elif strategy.origin == SourceOrigin.SYNTHESIZED_STUB:
                log("WARNING: no repository could be cloned; deploying a placeholder service")
                slog.error("Deploying synthesized placeholder", requested=requested_branch)
            else:
                slog.info("Source resolved", origin=strategy.origin.value, branch=branch)
            return resolved

        raise ResolveError(f"No source strategy succeeded for {service.name}", service=service.name)
