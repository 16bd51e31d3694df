"""Multi-stage generation pipeline: Papa -> Twins -> Mama -> Writer -> (Auditor).

Papa drafts a blueprint for the next reply, the Twins (Vex and Vax) debate it
over a few rounds, Mama merges the debate into the final blueprint, the
Writer turns it into prose, and the Auditor optionally line-edits the prose.
The result is a handoff instruction the host injects into its next
generation call: the Writer instruction carrying the blueprint, or the
audited prose when the Auditor ran. Runs are all-or-nothing: one failed
stage discards the run.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from data_designer_prose_polisher.errors import PipelineError, ProsePolisherError
from data_designer_prose_polisher.interfaces import EnvironmentBinder, Generator, LoggingNotifier, Notifier
from data_designer_prose_polisher.prompts import (
    ADHERENCE_INSTRUCTION,
    BLUEPRINT,
    BLUEPRINT_SOURCE,
    DEFAULT_BLUEPRINT,
    DEFAULT_BLUEPRINT_SOURCE,
    DEFAULT_TWINS_VAX_INSTRUCTIONS_BASE,
    DEFAULT_TWINS_VEX_INSTRUCTIONS_BASE,
    DELIVERABLE,
    PAPA_BLUEPRINT_SOURCE,
    PERSONA,
    PREVIOUS_IDEAS,
    ROUND,
    TWIN_DELIBERATIONS,
    WRITER_PROSE,
    InstructionTemplate,
    handoff_template,
    role_template,
    twins_round_template,
)
from data_designer_prose_polisher.roles import PIPELINE_ORDER, Role
from data_designer_prose_polisher.sampling import weighted_choice
from data_designer_prose_polisher.settings import ChaosOption, RoleBinding, Settings

logger = logging.getLogger(__name__)


@dataclass
class PipelineRun:
    blueprint: str | None = None
    blueprint_source: str = DEFAULT_BLUEPRINT_SOURCE
    deliberations: list[str] = field(default_factory=list)
    stage_outputs: dict[str, str] = field(default_factory=dict)
    chaos_option: ChaosOption | None = None


@dataclass(frozen=True)
class Handoff:
    """Final instruction for the host's next generation call."""

    instruction: str
    blueprint: str
    deliverable: str
    adherence: str = ADHERENCE_INSTRUCTION
    position: str = "chat"
    depth: int = 2
    adherence_depth: int = 0
    chaos_option: ChaosOption | None = None

    def to_injections(self) -> list[dict[str, object]]:
        return [
            {"id": "prose_polisher_adherence", "position": self.position, "depth": self.adherence_depth, "text": self.adherence},
            {"id": "prose_polisher_final_plan", "position": self.position, "depth": self.depth, "text": self.instruction},
        ]


class PipelineOrchestrator:
    def __init__(
        self,
        settings: Settings,
        generator: Generator,
        binder: EnvironmentBinder | None = None,
        notifier: Notifier | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self.generator = generator
        self.binder = binder
        self.notifier = notifier or LoggingNotifier()
        self.rng = rng or random.Random()
        self.running = False
        self.state: Role | None = None
        self.current_run: PipelineRun | None = None
        self._bound = False

    @property
    def is_idle(self) -> bool:
        return self.state is None

    async def run(self) -> Handoff | None:
        """Run every enabled stage once.

        Returns ``None`` when a run is already in progress or when any stage
        fails; failures are logged and surfaced through the notifier.
        """
        if self.running:
            logger.debug("Pipeline already running; ignoring re-entrant trigger")
            return None

        self.running = True
        self.current_run = PipelineRun()
        try:
            handoff = await self._execute(self.current_run)
            self.notifier.notify("success", "Pipeline: blueprint complete, instruction prepared.")
            return handoff
        except ProsePolisherError as exc:
            logger.error(f"Pipeline failed: {exc}")
            self._notify_failure(exc)
            return None
        except Exception as exc:
            logger.exception("Unexpected error during pipeline execution")
            self._notify_failure(exc)
            return None
        finally:
            self.current_run = None
            self.state = None
            self.running = False
            await self._release()

    def _notify_failure(self, exc: Exception) -> None:
        self.notifier.notify("error", f"Pipeline failed: {exc}. Generation will proceed without the blueprint.")

    async def _release(self) -> None:
        if not self._bound or self.binder is None:
            return
        self._bound = False
        try:
            await self.binder.release()
        except Exception:
            logger.exception("Failed to restore the generation environment after the pipeline run")

    # -- stage helpers ------------------------------------------------------

    async def _bind(self, binding: RoleBinding, label: str) -> None:
        if self.binder is None or not binding.is_set:
            logger.debug(f"{label}: no binding set, using the current connection")
            return
        self._bound = True
        if not await self.binder.bind(binding):
            raise PipelineError(f"Failed to configure {label} environment ({binding.describe()})")
        logger.info(f"{label}: bound to {binding.describe()}")

    async def _generate(self, run: PipelineRun, label: str, instruction: str) -> str:
        try:
            text = await self.generator.generate(instruction)
        except Exception as exc:
            raise PipelineError(f"{label} stage failed: {exc}") from exc
        if not text or not text.strip():
            raise PipelineError(f"{label} stage produced an empty response")
        text = text.strip()
        run.stage_outputs[label] = text
        return text

    def _templates(self) -> dict[Role, InstructionTemplate]:
        pipeline = self.settings.pipeline
        return {
            role: role_template(role, pipeline.instructions_for(role))
            for role in PIPELINE_ORDER
            if role is not Role.TWINS
        }

    def select_writer_binding(self) -> RoleBinding:
        """The Writer's binding for this run: a chaos roll when chaos mode has options."""
        writer = self.settings.pipeline.writer
        if writer.chaos_mode_enabled and writer.chaos_options:
            option = weighted_choice(writer.chaos_options, self.rng)
            if option is not None:
                self.notifier.notify("info", f"Chaos roll: {option.describe()} (W: {option.weight})")
                return option
        return writer.binding

    # -- stages -------------------------------------------------------------

    async def _execute(self, run: PipelineRun) -> Handoff:
        pipeline = self.settings.pipeline
        templates = self._templates()

        if pipeline.papa.enabled:
            self.state = Role.PAPA
            self.notifier.notify("info", "Pipeline: Papa is drafting the blueprint...")
            await self._bind(pipeline.papa.binding, Role.PAPA.label)
            run.blueprint = await self._generate(run, "papa", templates[Role.PAPA].render())
            run.blueprint_source = PAPA_BLUEPRINT_SOURCE
        else:
            run.blueprint = DEFAULT_BLUEPRINT

        if pipeline.twins.enabled:
            self.state = Role.TWINS
            await self._run_twins(run)

        deliberations = "\n\n".join(run.deliberations)
        if pipeline.mama.enabled:
            self.state = Role.MAMA
            self.notifier.notify("info", "Pipeline: Mama is finalizing the blueprint...")
            await self._bind(pipeline.mama.binding, Role.MAMA.label)
            run.blueprint = await self._generate(
                run,
                "mama",
                templates[Role.MAMA].render(
                    **{
                        BLUEPRINT: run.blueprint,
                        TWIN_DELIBERATIONS: deliberations or "(no deliberations)",
                        BLUEPRINT_SOURCE: run.blueprint_source,
                    }
                ),
            )
        elif deliberations:
            run.blueprint = f"{run.blueprint}\n\n# TWIN DELIBERATIONS\n{deliberations}"

        self.state = Role.WRITER
        self.notifier.notify("info", "Pipeline: Writer is crafting...")
        writer_binding = self.select_writer_binding()
        if isinstance(writer_binding, ChaosOption):
            run.chaos_option = writer_binding
        await self._bind(writer_binding, Role.WRITER.label)
        writer_instruction = templates[Role.WRITER].render(**{BLUEPRINT: run.blueprint})
        deliverable = await self._generate(run, "writer", writer_instruction)
        instruction = writer_instruction

        if pipeline.auditor.enabled:
            self.state = Role.AUDITOR
            self.notifier.notify("info", "Pipeline: handing off to the Auditor...")
            await self._bind(pipeline.auditor.binding, Role.AUDITOR.label)
            deliverable = await self._generate(
                run, "auditor", templates[Role.AUDITOR].render(**{WRITER_PROSE: deliverable})
            )
            instruction = handoff_template().render(**{DELIVERABLE: deliverable})

        return Handoff(
            instruction=instruction,
            blueprint=run.blueprint,
            deliverable=deliverable,
            chaos_option=run.chaos_option,
        )

    async def _run_twins(self, run: PipelineRun) -> None:
        twins = self.settings.pipeline.twins
        template = twins_round_template()
        personas = (
            ("Vex", twins.vex_instructions.strip() or DEFAULT_TWINS_VEX_INSTRUCTIONS_BASE),
            ("Vax", twins.vax_instructions.strip() or DEFAULT_TWINS_VAX_INSTRUCTIONS_BASE),
        )
        await self._bind(twins.binding, Role.TWINS.label)
        for round_no in range(1, twins.iterations + 1):
            self.notifier.notify("info", f"Pipeline: Twins deliberating (round {round_no}/{twins.iterations})...")
            for name, persona in personas:
                note = await self._generate(
                    run,
                    f"{name.lower()}_{round_no}",
                    template.render(
                        **{
                            PERSONA: persona,
                            BLUEPRINT: run.blueprint or DEFAULT_BLUEPRINT,
                            PREVIOUS_IDEAS: "\n\n".join(run.deliberations) or "(none yet)",
                            ROUND: str(round_no),
                        }
                    ),
                )
                run.deliberations.append(f"{name} (Round {round_no}): {note}")
