"""Discovery of the default user an image runs as."""

import re
import shutil
from typing import Callable, Optional

from dbmanager.constants import (
    DEFAULT_GID,
    DEFAULT_IDENTITY_USER,
    DEFAULT_UID,
    IDENTITY_TIMEOUT_SECONDS,
)
from dbmanager.errors import CommandError, CommandNotFoundError
from dbmanager.models import Dialect, IdentitySource, ImageIdentity
from dbmanager.services.command_runner import CommandRunner

_UID_PATTERN = re.compile(r"uid=(\d+)(?:\(([^)]*)\))?")
_GID_PATTERN = re.compile(r"gid=(\d+)(?:\(([^)]*)\))?")


def parse_id_output(output: str) -> Optional[ImageIdentity]:
    """Parses `uid=999(mysql) gid=999(mysql) groups=...` as printed by `id`."""
    uid_match = _UID_PATTERN.search(output)
    gid_match = _GID_PATTERN.search(output)
    if not uid_match or not gid_match:
        return None
    return ImageIdentity(
        uid=int(uid_match.group(1)),
        gid=int(gid_match.group(1)),
        user=uid_match.group(2) or "unknown",
        group=gid_match.group(2) or "",
    )


class ImageIdentityService:
    """Runs a throwaway container through the runtime CLI to read its identity.

    Discovery is best effort: every failure falls back to 1000:1000, with the
    reason kept in `ImageIdentity.source`.
    """

    def __init__(
        self,
        command_runner: CommandRunner,
        logger,
        timeout: float = IDENTITY_TIMEOUT_SECONDS,
        which: Callable[[str], Optional[str]] = shutil.which,
        default_uid: int = DEFAULT_UID,
        default_gid: int = DEFAULT_GID,
    ):
        self.command_runner = command_runner
        self.logger = logger
        self.timeout = timeout
        self.which = which
        self.default_uid = default_uid
        self.default_gid = default_gid

    def resolve_cli(self, dialect: Dialect) -> Optional[str]:
        preferred, fallback = ("docker", "podman")
        if Dialect(dialect) == Dialect.PODMAN:
            preferred, fallback = fallback, preferred

        if self.which(preferred):
            return preferred
        if self.which(fallback):
            self.logger.warning(
                "%s socket detected but only the %s command is available.",
                Dialect(dialect).value.capitalize(),
                fallback,
            )
            return fallback
        return None

    def fallback(self, source: IdentitySource) -> ImageIdentity:
        return ImageIdentity(
            uid=self.default_uid,
            gid=self.default_gid,
            user=DEFAULT_IDENTITY_USER,
            source=source,
        )

    def discover(self, image: str, dialect: Dialect) -> ImageIdentity:
        cli = self.resolve_cli(dialect)
        if cli is None:
            self.logger.warning(
                "Neither docker nor podman command is available; using default identity %s:%s.",
                self.default_uid,
                self.default_gid,
            )
            return self.fallback(IdentitySource.CLI_UNAVAILABLE)

        try:
            result = self.command_runner.run(
                [cli, "run", "--rm", image, "id"],
                check=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except CommandNotFoundError as exc:
            self.logger.warning("Identity command unavailable for %s: %s", image, exc)
            return self.fallback(IdentitySource.CLI_UNAVAILABLE)
        except CommandError as exc:
            self.logger.warning("Could not read user info from %s: %s", image, exc)
            return self.fallback(IdentitySource.COMMAND_FAILED)

        identity = parse_id_output(result.stdout or "")
        if identity is None:
            self.logger.error(
                "Unexpected `id` output from %s, using default identity: %r",
                image,
                (result.stdout or "")[:200],
            )
            return self.fallback(IdentitySource.UNPARSEABLE_OUTPUT)

        self.logger.info(
            "Container user info for %s: %s:%s (%s)",
            image,
            identity.uid,
            identity.gid,
            identity.user,
        )
        return identity
