# consultor/core/orchestrator.py
"""
Consultation Orchestrator - the only component that performs I/O.

It dispatches actions into the reducer and, in reaction to some of them,
calls the feedback generator, the diagnosis generator or the transcript
store, feeding their results back in as further actions.

Failure policy:
- feedback failures become a fixed fallback feedback (flow keeps moving)
- any diagnosis part failure replaces the whole batch with fallback parts
- persistence failures become a notification; the flow is not rolled back
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from consultor.agents.consultant_agent import ConsultantAgent
from consultor.core.exceptions import AgentError, SessionError, ValidationError
from consultor.core.prompt_manager import PromptManager, PromptType
from consultor.core.reducer import (
    Action,
    ConsultationReducer,
    current_block,
    current_question,
    is_last_block,
    is_last_question_in_block,
    progress,
)
from consultor.models.consultation import ConsultationConfig, FinalDiagnosisPart
from consultor.models.flow_models import ConsultationView, NotificationLevel
from consultor.models.generation_models import DiagnosisRequest, FeedbackRequest
from consultor.models.session_state import (
    ConsultationHistoryItem,
    ConsultationSession,
    ConsultationState,
    ConsultationTranscript,
    Notification,
    SessionStore,
)
from consultor.services.gpt_service import GPTService
from consultor.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

V = ConsultationView


class ConsultationOrchestrator:
    """
    Drives consultation sessions through the reducer.

    This orchestrator:
    1. Owns every session's state exclusively
    2. Allows at most one user-triggered operation in flight per session
    3. Calls the generation collaborators and converts their failures into fallbacks
    4. Persists the finished transcript exactly once per run
    5. Discards late results belonging to a run superseded by a restart
    """

    def __init__(
        self,
        config: ConsultationConfig,
        feedback_generator: Optional[Any] = None,
        diagnosis_generator: Optional[Any] = None,
        transcript_store: Optional[TranscriptStore] = None,
        session_store: Optional[SessionStore] = None,
        prompt_manager: Optional[PromptManager] = None,
        agent_name: Optional[str] = None,
        enable_logging: bool = True
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Immutable interview definition
            feedback_generator: Object with async generate_feedback(FeedbackRequest) -> str
            diagnosis_generator: Object with async generate_diagnosis_part(DiagnosisRequest) -> FinalDiagnosisPart
            transcript_store: Persistence collaborator with async save(ConsultationTranscript) -> str
            session_store: Session management
            prompt_manager: Source of fixed texts (fallbacks, notifications)
            agent_name: Name shown in the typing indicator (defaults to the consultant's name)
            enable_logging: Enable detailed logging
        """
        self.config = config
        self.reducer = ConsultationReducer(config)
        self.session_store = session_store or SessionStore()
        self.prompt_manager = prompt_manager or PromptManager()
        self.agent_name = agent_name or config.identity.name
        self.enable_logging = enable_logging

        self.feedback_generator = feedback_generator
        self.diagnosis_generator = diagnosis_generator
        self.transcript_store = transcript_store
        self.gpt_service: Optional[GPTService] = None
        self._pending_writes: Set[asyncio.Task] = set()

        # Collaborators not injected are created on first use
        self._services_initialized = all(
            c is not None for c in (feedback_generator, diagnosis_generator, transcript_store)
        )

        logger.info("Consultation orchestrator initialized")

    def _ensure_services_initialized(self):
        """Create missing collaborators from environment settings"""
        if self._services_initialized:
            return

        logger.info("Initializing consultation services (lazy loading)...")

        if self.feedback_generator is None or self.diagnosis_generator is None:
            self.gpt_service = GPTService()
            agent = ConsultantAgent(
                identity=self.config.identity,
                prompt_manager=self.prompt_manager,
                gpt_service=self.gpt_service
            )
            self.feedback_generator = self.feedback_generator or agent
            self.diagnosis_generator = self.diagnosis_generator or agent

        if self.transcript_store is None:
            self.transcript_store = TranscriptStore()

        self._services_initialized = True
        logger.info("Consultation services initialized")

    # ===========================================
    # SESSION ACCESS
    # ===========================================

    def _get_session(self, session_id: str) -> ConsultationSession:
        session = self.session_store.get(session_id)
        if session is None:
            raise SessionError("Consultation session not found", session_id=session_id)
        return session

    def _reject_if_busy(self, session: ConsultationSession, operation: str) -> bool:
        if session.in_flight:
            logger.warning(f"[{session.session_id[:8]}] {operation} ignored: another operation is in flight")
            return True
        return False

    def _is_current_run(self, session: ConsultationSession, run_id: str) -> bool:
        return session.run_id == run_id

    def _notify(self, session: ConsultationSession, level: NotificationLevel,
                title: PromptType, message: PromptType):
        session.notifications.append(Notification(
            level=level,
            title=self.prompt_manager.get_prompt(title),
            message=self.prompt_manager.get_prompt(message),
        ))

    def _dispatch(self, session: ConsultationSession, action: Action) -> ConsultationState:
        previous = session.state
        session.state = self.reducer.reduce(previous, action)

        if self.enable_logging and previous.view != session.state.view:
            logger.info(
                f"[{session.session_id[:8]}] {action.type.value}: "
                f"{previous.view.value} -> {session.state.view.value}"
            )

        if previous.view != V.MODULE_RECOMMENDATION and session.state.view == V.MODULE_RECOMMENDATION:
            self._schedule_persistence(session)

        return session.state

    # ===========================================
    # USER OPERATIONS
    # ===========================================

    async def start_consultation(self, user_id: Optional[str] = None) -> ConsultationSession:
        """Create a fresh session in the welcome view"""
        session = self.session_store.create_session(user_id=user_id)
        logger.info(f"Started consultation session {session.session_id[:8]}...")
        return session

    async def open_initial_form(self, session_id: str) -> ConsultationState:
        session = self._get_session(session_id)
        if self._reject_if_busy(session, "open_initial_form"):
            return session.state
        return self._dispatch(session, Action.go_to_initial_form())

    async def submit_initial_form(self, session_id: str, form_data: Dict[str, Any]) -> ConsultationState:
        """
        Record the initial form and move to the first question.

        Raises:
            ValidationError: If form_data is not a mapping
        """
        session = self._get_session(session_id)
        if not isinstance(form_data, dict):
            raise ValidationError("Initial form data must be an object", field="form_data")
        if self._reject_if_busy(session, "submit_initial_form"):
            return session.state
        if session.state.view not in (V.WELCOME, V.INITIAL_FORM):
            logger.warning(f"[{session_id[:8]}] submit_initial_form ignored in view {session.state.view.value}")
            return session.state

        return self._dispatch(session, Action.submit_initial_form(form_data))

    async def submit_answer(self, session_id: str, answer: str) -> ConsultationState:
        """
        Record the answer to the current question and fetch its feedback.

        The feedback generator's failure never escapes: a fallback feedback
        is recorded instead and a notification is queued.

        Raises:
            ValidationError: If the answer is empty
        """
        session = self._get_session(session_id)
        if not isinstance(answer, str) or not answer.strip():
            raise ValidationError("Answer cannot be empty", field="answer")
        if self._reject_if_busy(session, "submit_answer"):
            return session.state

        state = session.state
        question = current_question(state, self.config)
        if question is None or question.id in state.user_answers:
            logger.warning(f"[{session_id[:8]}] submit_answer ignored: no unanswered current question")
            return state

        block = current_block(state, self.config)
        run_id = session.run_id
        session.in_flight = True
        try:
            self._ensure_services_initialized()
            self._dispatch(session, Action.submit_answer(question.id, answer))

            request = FeedbackRequest.for_question(question, block, answer, state.initial_form_data)
            feedback = await self._request_feedback(request)

            if not self._is_current_run(session, run_id):
                logger.info(f"[{session_id[:8]}] Discarding feedback for {question.id} from a superseded run")
                return session.state

            if feedback is None:
                feedback = self.prompt_manager.get_prompt(PromptType.FEEDBACK_FALLBACK)
                self._notify(session, NotificationLevel.ERROR,
                             PromptType.FEEDBACK_ERROR_TITLE, PromptType.FEEDBACK_ERROR_MESSAGE)

            self._dispatch(session, Action.receive_feedback(question.id, feedback))
        finally:
            if self._is_current_run(session, run_id):
                session.in_flight = False

        return session.state

    async def proceed(self, session_id: str) -> ConsultationState:
        """
        Advance the consultation. The effect depends on the current view:

        - question: next question, or the block comment after the block's last question
        - block_comment: next block, or final diagnosis generation after the last block
        - final_summary: module recommendation (starts the transcript write)
        """
        session = self._get_session(session_id)
        if self._reject_if_busy(session, "proceed"):
            return session.state

        state = session.state
        run_id = session.run_id
        session.in_flight = True
        try:
            if state.view == V.QUESTION:
                question = current_question(state, self.config)
                if question is None or question.id not in state.ai_feedbacks:
                    logger.warning(f"[{session_id[:8]}] proceed ignored: current question has no feedback yet")
                elif is_last_question_in_block(state, self.config):
                    self._dispatch(session, Action.show_block_comment())
                else:
                    self._dispatch(session, Action.proceed_to_next_question())

            elif state.view == V.BLOCK_COMMENT:
                if is_last_block(state, self.config):
                    self._ensure_services_initialized()
                    await self._generate_final_diagnosis(session, run_id)
                else:
                    self._dispatch(session, Action.proceed_to_next_block())

            elif state.view == V.FINAL_SUMMARY:
                self._ensure_services_initialized()
                self._dispatch(session, Action.proceed_to_module_recommendation())

            else:
                logger.warning(f"[{session_id[:8]}] proceed ignored in view {state.view.value}")
        finally:
            if self._is_current_run(session, run_id):
                session.in_flight = False

        return session.state

    async def restart(self, session_id: str) -> ConsultationState:
        """
        Reset the session to the initial state.

        Outstanding generator calls are not cancelled; their results are
        discarded when they arrive because the run id no longer matches.
        """
        session = self._get_session(session_id)

        session.run_id = str(uuid4())
        session.in_flight = False
        session.completion_persisted = False
        session.consultation_id = None
        session.notifications = []

        logger.info(f"[{session_id[:8]}] Consultation restarted")
        return self._dispatch(session, Action.restart())

    # ===========================================
    # GENERATION
    # ===========================================

    async def _request_feedback(self, request: FeedbackRequest) -> Optional[str]:
        """Return the generated feedback, or None if generation failed"""
        try:
            feedback = await self.feedback_generator.generate_feedback(request)
        except Exception as e:
            logger.error(f"Feedback generation failed: {e}")
            return None

        if isinstance(feedback, dict):
            feedback = feedback.get("feedback")
        if not isinstance(feedback, str) or not feedback.strip():
            logger.error("Feedback generation returned no text")
            return None
        return feedback

    async def _request_diagnosis_part(self, request: DiagnosisRequest) -> str:
        """
        Return the content for one part.

        Raises:
            AgentError: If the collaborator returned no content
        """
        result = await self.diagnosis_generator.generate_diagnosis_part(request)
        content = result.get("content") if isinstance(result, dict) else getattr(result, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise AgentError(f"No content generated for diagnosis part '{request.part_id}'")
        return content

    async def _generate_final_diagnosis(self, session: ConsultationSession, run_id: str):
        """
        Generate every diagnosis part concurrently and install them as one batch.

        Results are re-associated with their descriptor by request position,
        never by what the collaborator echoes back. If any call fails the
        whole batch is replaced by fallback parts.
        """
        self._dispatch(session, Action.request_final_diagnosis())
        if session.state.view != V.GENERATING_FINAL_DIAGNOSIS:
            return

        state = session.state
        descriptors = self.config.diagnosis_parts
        requests = [
            DiagnosisRequest.for_part(descriptor, state.user_answers, state.initial_form_data)
            for descriptor in descriptors
        ]

        results = await asyncio.gather(
            *(self._request_diagnosis_part(request) for request in requests),
            return_exceptions=True
        )

        if not self._is_current_run(session, run_id):
            logger.info(f"[{session.session_id[:8]}] Discarding diagnosis from a superseded run")
            return

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error(
                f"[{session.session_id[:8]}] {len(failures)}/{len(descriptors)} diagnosis parts failed, "
                f"using fallback for all parts: {failures[0]}"
            )
            parts = self._fallback_diagnosis_parts()
            self._notify(session, NotificationLevel.WARNING,
                         PromptType.DIAGNOSIS_ERROR_TITLE, PromptType.DIAGNOSIS_ERROR_MESSAGE)
        else:
            parts = [
                FinalDiagnosisPart(part_id=d.part_id, title=d.title, content=content)
                for d, content in zip(descriptors, results)
            ]

        self._dispatch(session, Action.receive_all_diagnosis_parts(parts))

    def _fallback_diagnosis_parts(self) -> List[FinalDiagnosisPart]:
        content = self.prompt_manager.get_prompt(PromptType.DIAGNOSIS_PART_FALLBACK)
        return [
            FinalDiagnosisPart(part_id=d.part_id, title=d.title, content=content)
            for d in self.config.diagnosis_parts
        ]

    # ===========================================
    # PERSISTENCE
    # ===========================================

    def _schedule_persistence(self, session: ConsultationSession) -> Optional[asyncio.Task]:
        """
        Start the transcript write for the current run, at most once per run.

        The write runs as a tracked task; wait_for_pending_writes() awaits
        every outstanding write.

        Returns:
            The write task, or None if nothing is written
        """
        if session.completion_persisted:
            return None

        state = session.state
        if not state.initial_form_completed or not state.final_diagnosis_parts or not session.user_id:
            logger.warning(
                f"[{session.session_id[:8]}] Completion not persisted: "
                f"form_completed={state.initial_form_completed}, "
                f"parts={len(state.final_diagnosis_parts)}, user={'set' if session.user_id else 'missing'}"
            )
            return None

        session.completion_persisted = True
        self._ensure_services_initialized()

        transcript = ConsultationTranscript(
            user_id=session.user_id,
            initial_form_data=state.initial_form_data,
            user_answers=state.user_answers,
            ai_feedbacks=state.ai_feedbacks,
            final_diagnosis_parts=state.final_diagnosis_parts,
            completed_at=datetime.now(timezone.utc),
        )

        task = asyncio.create_task(self._persist_completion(session, session.run_id, transcript))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)
        return task

    async def _persist_completion(self, session: ConsultationSession, run_id: str,
                                  transcript: ConsultationTranscript) -> bool:
        """
        Write the transcript and report the outcome on the session.

        The outcome is dropped if the session was restarted meanwhile.

        Returns:
            True if the transcript was stored
        """
        try:
            consultation_id = await self.transcript_store.save(transcript)
        except Exception as e:
            logger.error(f"[{session.session_id[:8]}] Failed to persist consultation: {e}")
            if self._is_current_run(session, run_id):
                self._notify(session, NotificationLevel.ERROR,
                             PromptType.SAVE_ERROR_TITLE, PromptType.SAVE_ERROR_MESSAGE)
            return False

        if not self._is_current_run(session, run_id):
            logger.info(f"[{session.session_id[:8]}] Consultation {consultation_id} persisted for a superseded run")
            return True

        session.consultation_id = consultation_id
        self._notify(session, NotificationLevel.SUCCESS,
                     PromptType.SAVE_SUCCESS_TITLE, PromptType.SAVE_SUCCESS_MESSAGE)
        logger.info(f"[{session.session_id[:8]}] Consultation persisted as {consultation_id}")
        return True

    # ===========================================
    # QUERIES
    # ===========================================

    def typing_indicator_text(self, session_id: str) -> Optional[str]:
        session = self._get_session(session_id)
        if not session.state.is_typing:
            return None
        return self.prompt_manager.get_prompt(PromptType.TYPING_INDICATOR, agent_name=self.agent_name)

    def pop_notifications(self, session_id: str) -> List[Notification]:
        session = self._get_session(session_id)
        notifications, session.notifications = session.notifications, []
        return notifications

    def get_session_info(self, session_id: str) -> Dict[str, Any]:
        """
        Snapshot of a session for presentation: raw state plus derived values.
        """
        session = self._get_session(session_id)
        state = session.state

        block = current_block(state, self.config)
        question = current_question(state, self.config)

        info = {
            "session_id": session.session_id,
            "user_id": session.user_id,
            "state": state.model_dump(mode="json"),
            "busy": session.in_flight,
            "typing_indicator": self.typing_indicator_text(session_id),
            "progress": progress(state, self.config),
            "current_block": None,
            "current_question": None,
            "notifications": [n.model_dump(mode="json") for n in session.notifications],
            "consultation_id": session.consultation_id,
        }

        if block is not None and state.view in (V.QUESTION, V.BLOCK_COMMENT):
            info["current_block"] = {
                "id": block.id,
                "theme": block.theme,
                "closing_comment": block.closing_comment,
                "is_last_block": is_last_block(state, self.config),
            }

        if question is not None:
            info["current_question"] = {
                "id": question.id,
                "text": question.text,
                "number_in_block": question.index_in_block + 1,
                "is_last_in_block": is_last_question_in_block(state, self.config),
                "answer": state.user_answers.get(question.id),
                "feedback": state.ai_feedbacks.get(question.id),
            }

        return info

    async def get_history(self, user_id: str) -> List[ConsultationHistoryItem]:
        self._ensure_services_initialized()
        return await self.transcript_store.list_for_user(user_id)

    async def health_check(self) -> Dict[str, Any]:
        """
        Check health of all collaborators.
        """
        health = {
            "orchestrator": "healthy",
            "services": {},
            "reducer": "healthy",
            "active_sessions": len(self.session_store.sessions),
        }

        issues = self.reducer.validate()
        if issues:
            health["reducer"] = f"issues: {issues}"

        for name, collaborator in (
            ("feedback_generator", self.feedback_generator),
            ("diagnosis_generator", self.diagnosis_generator),
            ("transcript_store", self.transcript_store),
        ):
            if collaborator is None or not hasattr(collaborator, "health_check"):
                health["services"][name] = "not initialized"
                continue
            try:
                status = await collaborator.health_check()
                health["services"][name] = "healthy" if status.get("healthy", False) else "unhealthy"
            except Exception as e:
                health["services"][name] = f"error: {str(e)}"

        if self.gpt_service is not None:
            health["metrics"] = {"gpt": self.gpt_service.get_metrics()}

        unhealthy = [s for s in health["services"].values() if s not in ("healthy", "not initialized")]
        health["overall"] = "healthy" if not unhealthy and not issues else "degraded"
        return health

    def get_flow_debug_info(self) -> Dict[str, Any]:
        summary = self.reducer.get_flow_summary()
        return {
            "flow_summary": summary,
            "validation_issues": self.reducer.validate(),
            "blocks": [
                {"id": b.id, "theme": b.theme, "question_count": b.question_count}
                for b in self.config.blocks
            ],
            "diagnosis_parts": [d.part_id for d in self.config.diagnosis_parts],
            "active_sessions": len(self.session_store.sessions),
        }

    async def wait_for_pending_writes(self):
        """Wait until every transcript write started so far has finished"""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    async def shutdown(self):
        await self.wait_for_pending_writes()
        if self.gpt_service is not None:
            await self.gpt_service.shutdown()
        if self.transcript_store is not None and hasattr(self.transcript_store, "shutdown"):
            await self.transcript_store.shutdown()

