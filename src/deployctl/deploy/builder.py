"""Image builder."""

from typing import Callable

from docker.errors import BuildError as DockerBuildError, DockerException
from requests.exceptions import RequestException

from deployctl.core.exceptions import BuildError, RuntimeUnavailableError
from deployctl.core.logging import get_logger
from deployctl.deploy.models import ImageRef, ResolvedSource
from deployctl.deploy.runtime import ContainerRuntime
from deployctl.registry import ServiceDescriptor

logger = get_logger(__name__)

LineSink = Callable[[str], None]


def _discard(line: str) -> None:
    pass


class Builder:
    """Turns a source tree into a tagged image.

    The tag depends only on the service, so rebuilding the same source
    replaces the same image.
    """

    def __init__(self, runtime: ContainerRuntime):
        self._runtime = runtime

    def build(
        self,
        service: ServiceDescriptor,
        source: ResolvedSource,
        force_rebuild: bool = False,
        log: LineSink = _discard,
    ) -> ImageRef:
        """Build the image for ``source``.

        Raises:
            BuildError: the build failed; its output has already gone to ``log``
        """
        tag = service.image_tag
        if not (source.source_path / "Dockerfile").is_file():
            raise BuildError(
                f"No Dockerfile in {source.source_path}",
                service=service.name,
            )

        log(f"Building image {tag}" + (" (no cache)" if force_rebuild else ""))
        try:
            image_id = self._runtime.build(source.source_path, tag, nocache=force_rebuild, on_line=log)
        except DockerBuildError as e:
            raise BuildError(f"Image build failed for {service.name}: {e.msg}", service=service.name)
        except RuntimeUnavailableError as e:
            raise BuildError(str(e), service=service.name)
        except DockerException as e:
            raise BuildError(f"Image build failed for {service.name}: {e}", service=service.name)
        except RequestException as e:
            raise BuildError(f"Lost connection to docker while building {service.name}: {e}", service=service.name)

        logger.info("Image built", service=service.name, tag=tag, image=image_id[:19])
        log(f"Image built: {tag}")
        return ImageRef(tag=tag, image_id=image_id)
