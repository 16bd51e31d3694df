from __future__ import annotations


class ProsePolisherError(Exception):
    """Base class for errors raised by the prose polisher."""


class ConfigurationError(ProsePolisherError):
    """Required configuration is missing or malformed (e.g. the static rule file)."""


class TemplateError(ConfigurationError):
    """An instruction template is missing one of its required slots."""


class GenerationError(ProsePolisherError):
    """An external generation, triage, or environment call failed."""


class PipelineError(ProsePolisherError):
    """A pipeline stage failed; the whole run is discarded."""


class RuleEditError(ProsePolisherError):
    """A rule edit was rejected (static content change, empty name, bad regex)."""
