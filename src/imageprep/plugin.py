"""Bundler lifecycle adapter.

The preprocessor needs two things the host build only knows after start-up:
the directory artifacts live under (known once configuration is resolved)
and the module resolver (known once the build starts).  The plugin collects
both through its hooks, then freezes them into a ``PreprocessorContext``
that every pass reads and none can change.
"""

from __future__ import annotations

from pathlib import Path

from imageprep.codec import ImageCodec, PillowCodec
from imageprep.errors import ConfigError
from imageprep.logging import get_logger
from imageprep.markup import MarkupParser
from imageprep.models import PreprocessorConfig, TransformResult
from imageprep.preprocessor import ImagePreprocessor, PreprocessorContext
from imageprep.resolver import FileSystemResolver, PathResolver

logger = get_logger("plugin")


class ImagePreprocessorPlugin:
    """Two-phase initialization around an ``ImagePreprocessor``.

    Call ``config_resolved`` and ``build_start`` (in either order) before
    the first ``markup`` call.  Once a pass has used the context, the hooks
    can no longer change it.
    """

    name = "imageprep"

    def __init__(
        self,
        config: PreprocessorConfig | None = None,
        codec: ImageCodec | None = None,
        parser: MarkupParser | None = None,
    ) -> None:
        self.config = config or PreprocessorConfig()
        self.codec = codec or PillowCodec(background=self.config.background)
        self._parser = parser
        self._output_root: Path | None = None
        self._resolver: PathResolver | None = None
        self._preprocessor: ImagePreprocessor | None = None

    def _ensure_open(self, hook: str) -> None:
        if self._preprocessor is not None:
            raise ConfigError(f"{hook} fired after transform passes started")

    def config_resolved(self, output_root: Path | str) -> None:
        """Capture the directory converted artifacts are checked under."""
        self._ensure_open("config_resolved")
        self._output_root = Path(output_root)
        logger.debug("Output root: %s", self._output_root)

    def build_start(self, resolver: PathResolver) -> None:
        """Capture the resolver used to turn references into paths."""
        self._ensure_open("build_start")
        self._resolver = resolver

    @property
    def ready(self) -> bool:
        return self._output_root is not None and self._resolver is not None

    @property
    def preprocessor(self) -> ImagePreprocessor:
        if self._preprocessor is None:
            missing = [
                hook
                for hook, value in (
                    ("config_resolved", self._output_root),
                    ("build_start", self._resolver),
                )
                if value is None
            ]
            if missing:
                raise ConfigError(
                    f"Lifecycle hook(s) not fired yet: {', '.join(missing)}"
                )
            assert self._output_root is not None and self._resolver is not None
            context = PreprocessorContext(
                config=self.config,
                output_root=self._output_root,
                resolver=self._resolver,
                codec=self.codec,
            )
            self._preprocessor = ImagePreprocessor(context, parser=self._parser)
        return self._preprocessor

    @property
    def context(self) -> PreprocessorContext:
        return self.preprocessor.context

    async def markup(self, content: str, filename: str) -> TransformResult | None:
        """Preprocess one template's markup; ``None`` means unchanged."""
        return await self.preprocessor.transform(content, filename)


def create_preprocessor(
    config: PreprocessorConfig | None = None,
    *,
    output_root: Path | str | None = None,
    root: Path | str | None = None,
    public_dir: Path | str | None = None,
    codec: ImageCodec | None = None,
) -> ImagePreprocessor:
    """Build a ready preprocessor with a file-system resolver.

    The output root falls back to ``config.output_root``, then to *root*.

    Raises:
        ConfigError: If no output root can be determined.
    """
    config = config or PreprocessorConfig()
    resolved_root = output_root or config.output_root or root
    if resolved_root is None:
        raise ConfigError("No output root configured")

    plugin = ImagePreprocessorPlugin(config, codec=codec)
    plugin.config_resolved(resolved_root)
    plugin.build_start(
        FileSystemResolver(root=root, public_dir=public_dir, aliases=config.aliases)
    )
    return plugin.preprocessor
