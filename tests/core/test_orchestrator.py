# tests/core/test_orchestrator.py
"""
Consultation orchestrator tests with mocked collaborators.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock, patch

from consultor.core.exceptions import AgentError, PersistenceError, SessionError, ValidationError
from consultor.core.orchestrator import ConsultationOrchestrator
from consultor.core.reducer import is_last_block
from consultor.models.consultation import FinalDiagnosisPart
from consultor.models.flow_models import ConsultationView, NotificationLevel
from consultor.models.session_state import ConsultationState, ConsultationTranscript, SessionStore

V = ConsultationView

Q1 = "bloco_1_pergunta_1"
Q2 = "bloco_1_pergunta_2"

FEEDBACK_FALLBACK = "Desculpe, não consegui processar sua resposta no momento."
DIAGNOSIS_FALLBACK = "Não foi possível gerar esta parte do diagnóstico."


async def begin(orch, user_id="user-1", form_data=None):
    session = await orch.start_consultation(user_id=user_id)
    await orch.open_initial_form(session.session_id)
    await orch.submit_initial_form(session.session_id, form_data or {"nome_negocio": "Padaria"})
    return session


async def answer_all_questions(orch, session_id):
    """Answer and proceed until the closing comment of the last block"""
    while True:
        state = orch.session_store.get(session_id).state
        if state.view == V.QUESTION:
            await orch.submit_answer(session_id, "resposta")
            await orch.proceed(session_id)
        elif state.view == V.BLOCK_COMMENT and not is_last_block(state, orch.config):
            await orch.proceed(session_id)
        else:
            return state


def make_orchestrator(config, feedback=None, diagnosis=None, store=None):
    return ConsultationOrchestrator(
        config,
        feedback_generator=feedback or AsyncMock(generate_feedback=AsyncMock(return_value="feedback")),
        diagnosis_generator=diagnosis,
        transcript_store=store or AsyncMock(save=AsyncMock(return_value="consultation-1")),
        session_store=SessionStore()
    )


@pytest.mark.unit
class TestEndToEnd:

    async def test_full_consultation(self, orchestrator, mock_transcript_store):
        session = await begin(orchestrator)
        sid = session.session_id

        state = await orchestrator.submit_answer(sid, "A1")
        assert state.user_answers == {Q1: "A1"}
        assert state.ai_feedbacks == {Q1: "F1"}
        assert not state.is_loading

        state = await orchestrator.proceed(sid)
        assert state.view == V.QUESTION
        assert state.current_question_index == 1

        await orchestrator.submit_answer(sid, "A2")
        state = await orchestrator.proceed(sid)
        assert state.view == V.BLOCK_COMMENT
        assert state.ai_feedbacks == {Q1: "F1", Q2: "F2"}

        state = await orchestrator.proceed(sid)
        assert state.view == V.FINAL_SUMMARY
        assert [p.part_id for p in state.final_diagnosis_parts] == ["parte_1", "parte_2"]
        assert [p.content for p in state.final_diagnosis_parts] == ["Conteúdo parte_1", "Conteúdo parte_2"]

        state = await orchestrator.proceed(sid)
        assert state.view == V.MODULE_RECOMMENDATION
        await orchestrator.wait_for_pending_writes()
        mock_transcript_store.save.assert_awaited_once()

    async def test_feedback_request_carries_context(self, orchestrator, mock_feedback_generator):
        session = await begin(orchestrator, form_data={"nome_negocio": "Padaria"})
        await orchestrator.submit_answer(session.session_id, "A1")

        request = mock_feedback_generator.generate_feedback.await_args.args[0]
        assert request.question_text == "Pergunta 1.1?"
        assert request.user_answer == "A1"
        assert request.block_theme == "Tema 1"
        assert request.initial_form_data == {"nome_negocio": "Padaria"}

    async def test_diagnosis_requests_carry_all_answers(self, orchestrator, mock_diagnosis_generator):
        session = await begin(orchestrator)
        await answer_all_questions(orchestrator, session.session_id)
        await orchestrator.proceed(session.session_id)

        requests = [c.args[0] for c in mock_diagnosis_generator.generate_diagnosis_part.await_args_list]
        assert [r.part_id for r in requests] == ["parte_1", "parte_2"]
        assert requests[0].user_responses == {Q1: "resposta", Q2: "resposta"}
        assert requests[1].part_guidance == "Orientação 2"

    async def test_multi_block_flow(self, three_block_config, mock_feedback_generator,
                                    mock_diagnosis_generator, mock_transcript_store):
        orch = make_orchestrator(three_block_config, mock_feedback_generator,
                                 mock_diagnosis_generator, mock_transcript_store)
        session = await begin(orch)

        state = await answer_all_questions(orch, session.session_id)
        assert state.view == V.BLOCK_COMMENT
        assert state.current_block_index == 2
        assert len(state.user_answers) == 6

        state = await orch.proceed(session.session_id)
        assert state.view == V.FINAL_SUMMARY
        assert mock_diagnosis_generator.generate_diagnosis_part.await_count == 3


@pytest.mark.unit
class TestFeedbackFailures:

    async def test_feedback_failure_uses_fallback(self, orchestrator, mock_feedback_generator):
        mock_feedback_generator.generate_feedback.side_effect = AgentError("model down")
        session = await begin(orchestrator)

        state = await orchestrator.submit_answer(session.session_id, "A1")

        assert state.ai_feedbacks[Q1] == FEEDBACK_FALLBACK
        assert not state.is_loading
        assert not state.is_typing

        notifications = orchestrator.pop_notifications(session.session_id)
        assert len(notifications) == 1
        assert notifications[0].level == NotificationLevel.ERROR
        assert notifications[0].message == "Falha ao gerar feedback."

    async def test_empty_feedback_uses_fallback(self, orchestrator, mock_feedback_generator):
        mock_feedback_generator.generate_feedback.side_effect = None
        mock_feedback_generator.generate_feedback.return_value = "   "
        session = await begin(orchestrator)

        state = await orchestrator.submit_answer(session.session_id, "A1")
        assert state.ai_feedbacks[Q1] == FEEDBACK_FALLBACK

    async def test_flow_continues_after_fallback(self, orchestrator, mock_feedback_generator):
        mock_feedback_generator.generate_feedback.side_effect = RuntimeError("boom")
        session = await begin(orchestrator)

        await orchestrator.submit_answer(session.session_id, "A1")
        state = await orchestrator.proceed(session.session_id)
        assert state.current_question_index == 1

    async def test_empty_answer_rejected(self, orchestrator, mock_feedback_generator):
        session = await begin(orchestrator)

        with pytest.raises(ValidationError):
            await orchestrator.submit_answer(session.session_id, "   ")

        mock_feedback_generator.generate_feedback.assert_not_awaited()


@pytest.mark.unit
class TestDiagnosisGeneration:

    async def test_one_failing_part_replaces_all(self, three_block_config, mock_feedback_generator):
        async def generate_part(request):
            if request.part_id == "parte_2":
                raise AgentError("part 2 failed")
            return FinalDiagnosisPart(part_id=request.part_id, title=request.part_title, content="real")

        diagnosis = AsyncMock()
        diagnosis.generate_diagnosis_part.side_effect = generate_part
        orch = make_orchestrator(three_block_config, mock_feedback_generator, diagnosis)

        session = await begin(orch)
        await answer_all_questions(orch, session.session_id)
        state = await orch.proceed(session.session_id)

        assert state.view == V.FINAL_SUMMARY
        assert len(state.final_diagnosis_parts) == 3
        assert all(p.content == DIAGNOSIS_FALLBACK for p in state.final_diagnosis_parts)
        assert [p.title for p in state.final_diagnosis_parts] == ["Parte 1", "Parte 2", "Parte 3"]
        assert not state.is_loading

        notifications = orch.pop_notifications(session.session_id)
        assert [n.title for n in notifications] == ["Erro no Diagnóstico"]

    async def test_order_kept_when_parts_resolve_out_of_order(self, three_block_config, mock_feedback_generator):
        delays = {"parte_1": 0.03, "parte_2": 0.02, "parte_3": 0.0}
        completed = []

        async def generate_part(request):
            await asyncio.sleep(delays[request.part_id])
            completed.append(request.part_id)
            return FinalDiagnosisPart(part_id=request.part_id, title=request.part_title,
                                      content=f"texto {request.part_id}")

        diagnosis = AsyncMock()
        diagnosis.generate_diagnosis_part.side_effect = generate_part
        orch = make_orchestrator(three_block_config, mock_feedback_generator, diagnosis)

        session = await begin(orch)
        await answer_all_questions(orch, session.session_id)
        state = await orch.proceed(session.session_id)

        assert completed[0] == "parte_3"
        assert [p.part_id for p in state.final_diagnosis_parts] == ["parte_1", "parte_2", "parte_3"]
        assert [p.content for p in state.final_diagnosis_parts] == [
            "texto parte_1", "texto parte_2", "texto parte_3"
        ]

    async def test_results_matched_by_position_not_echoed_id(self, small_config, mock_feedback_generator):
        diagnosis = AsyncMock()
        diagnosis.generate_diagnosis_part.return_value = FinalDiagnosisPart(
            part_id="whatever", title="whatever", content="texto"
        )
        orch = make_orchestrator(small_config, mock_feedback_generator, diagnosis)

        session = await begin(orch)
        await answer_all_questions(orch, session.session_id)
        state = await orch.proceed(session.session_id)

        assert [p.part_id for p in state.final_diagnosis_parts] == ["parte_1", "parte_2"]
        assert [p.title for p in state.final_diagnosis_parts] == ["Parte 1", "Parte 2"]

    async def test_diagnosis_generated_once(self, orchestrator, mock_diagnosis_generator):
        session = await begin(orchestrator)
        await answer_all_questions(orchestrator, session.session_id)
        await orchestrator.proceed(session.session_id)
        await orchestrator.proceed(session.session_id)
        await orchestrator.proceed(session.session_id)

        assert mock_diagnosis_generator.generate_diagnosis_part.await_count == 2


@pytest.mark.unit
class TestConcurrencyGuards:

    async def test_operations_ignored_while_feedback_in_flight(self, orchestrator, mock_feedback_generator):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_feedback(request):
            entered.set()
            await release.wait()
            return "F1"

        mock_feedback_generator.generate_feedback.side_effect = slow_feedback
        session = await begin(orchestrator)
        sid = session.session_id

        task = asyncio.create_task(orchestrator.submit_answer(sid, "A1"))
        await entered.wait()

        busy_state = orchestrator.session_store.get(sid).state
        assert busy_state.is_loading
        assert orchestrator.get_session_info(sid)["busy"] is True

        assert await orchestrator.submit_answer(sid, "again") == busy_state
        assert await orchestrator.proceed(sid) == busy_state

        release.set()
        state = await task

        assert state.ai_feedbacks == {Q1: "F1"}
        assert state.user_answers == {Q1: "A1"}
        assert mock_feedback_generator.generate_feedback.await_count == 1
        assert orchestrator.session_store.get(sid).in_flight is False

    async def test_late_feedback_after_restart_is_discarded(self, orchestrator, mock_feedback_generator):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_feedback(request):
            entered.set()
            await release.wait()
            return "late"

        mock_feedback_generator.generate_feedback.side_effect = slow_feedback
        session = await begin(orchestrator)
        sid = session.session_id

        task = asyncio.create_task(orchestrator.submit_answer(sid, "A1"))
        await entered.wait()

        state = await orchestrator.restart(sid)
        assert state == ConsultationState()

        release.set()
        await task

        session = orchestrator.session_store.get(sid)
        assert session.state == ConsultationState()
        assert session.in_flight is False

    async def test_late_diagnosis_after_restart_is_discarded(self, orchestrator, mock_diagnosis_generator):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_part(request):
            entered.set()
            await release.wait()
            return FinalDiagnosisPart(part_id=request.part_id, title=request.part_title, content="late")

        mock_diagnosis_generator.generate_diagnosis_part.side_effect = slow_part
        session = await begin(orchestrator)
        sid = session.session_id
        await answer_all_questions(orchestrator, sid)

        task = asyncio.create_task(orchestrator.proceed(sid))
        await entered.wait()
        assert orchestrator.session_store.get(sid).state.view == V.GENERATING_FINAL_DIAGNOSIS

        await orchestrator.restart(sid)
        await begin_again(orchestrator, sid)

        release.set()
        await task

        state = orchestrator.session_store.get(sid).state
        assert state.view == V.QUESTION
        assert state.final_diagnosis_parts == []


async def begin_again(orch, session_id):
    await orch.submit_initial_form(session_id, {"nome_negocio": "Outra"})


@pytest.mark.unit
class TestPersistence:

    async def test_transcript_persisted_once(self, orchestrator, mock_transcript_store):
        session = await begin(orchestrator, user_id="user-42")
        sid = session.session_id
        await answer_all_questions(orchestrator, sid)
        await orchestrator.proceed(sid)
        await orchestrator.proceed(sid)
        await orchestrator.proceed(sid)
        await orchestrator.wait_for_pending_writes()

        mock_transcript_store.save.assert_awaited_once()
        transcript = mock_transcript_store.save.await_args.args[0]
        assert isinstance(transcript, ConsultationTranscript)
        assert transcript.user_id == "user-42"
        assert transcript.initial_form_data == {"nome_negocio": "Padaria"}
        assert set(transcript.user_answers) == {Q1, Q2}
        assert set(transcript.ai_feedbacks) == {Q1, Q2}
        assert [p.part_id for p in transcript.final_diagnosis_parts] == ["parte_1", "parte_2"]
        assert transcript.completed_at.tzinfo is not None

        session = orchestrator.session_store.get(sid)
        assert session.completion_persisted
        assert session.consultation_id == "consultation-123"
        assert [n.title for n in orchestrator.pop_notifications(sid)] == ["Consulta Salva!"]

    async def test_persistence_failure_notifies_without_rollback(self, orchestrator, mock_transcript_store):
        mock_transcript_store.save.side_effect = PersistenceError("redis down", user_id="user-1")
        session = await begin(orchestrator)
        sid = session.session_id
        await answer_all_questions(orchestrator, sid)
        await orchestrator.proceed(sid)

        state = await orchestrator.proceed(sid)

        assert state.view == V.MODULE_RECOMMENDATION
        await orchestrator.wait_for_pending_writes()
        notifications = orchestrator.pop_notifications(sid)
        assert len(notifications) == 1
        assert notifications[0].level == NotificationLevel.ERROR
        assert notifications[0].title == "Erro ao Salvar"

        # No automatic retry
        await orchestrator.proceed(sid)
        await orchestrator.wait_for_pending_writes()
        mock_transcript_store.save.assert_awaited_once()

    async def test_not_persisted_without_user(self, orchestrator, mock_transcript_store):
        session = await begin(orchestrator, user_id=None)
        await answer_all_questions(orchestrator, session.session_id)
        await orchestrator.proceed(session.session_id)
        state = await orchestrator.proceed(session.session_id)

        assert state.view == V.MODULE_RECOMMENDATION
        mock_transcript_store.save.assert_not_awaited()

    async def test_new_run_after_restart_persists_again(self, orchestrator, mock_transcript_store):
        session = await begin(orchestrator)
        sid = session.session_id
        for _ in range(2):
            await answer_all_questions(orchestrator, sid)
            await orchestrator.proceed(sid)
            await orchestrator.proceed(sid)
            await orchestrator.restart(sid)
            await begin_again(orchestrator, sid)

        await orchestrator.wait_for_pending_writes()
        assert mock_transcript_store.save.await_count == 2

    async def test_proceed_does_not_wait_for_the_write(self, orchestrator, mock_transcript_store):
        release = asyncio.Event()

        async def slow_save(transcript):
            await release.wait()
            return "consultation-123"

        mock_transcript_store.save.side_effect = slow_save
        session = await begin(orchestrator)
        sid = session.session_id
        await answer_all_questions(orchestrator, sid)
        await orchestrator.proceed(sid)

        state = await orchestrator.proceed(sid)
        assert state.view == V.MODULE_RECOMMENDATION
        assert session.consultation_id is None

        release.set()
        await orchestrator.wait_for_pending_writes()
        assert session.consultation_id == "consultation-123"

    @pytest.mark.parametrize("outcome", ["saved", "failed"])
    async def test_write_result_after_restart_is_discarded(self, orchestrator, mock_transcript_store, outcome):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_save(transcript):
            entered.set()
            await release.wait()
            if outcome == "failed":
                raise PersistenceError("redis down", user_id="user-1")
            return "old-run-consultation"

        mock_transcript_store.save.side_effect = slow_save
        session = await begin(orchestrator)
        sid = session.session_id
        await answer_all_questions(orchestrator, sid)
        await orchestrator.proceed(sid)
        await orchestrator.proceed(sid)
        await entered.wait()

        state = await orchestrator.restart(sid)
        release.set()
        await orchestrator.wait_for_pending_writes()

        assert state.view == V.WELCOME
        assert session.consultation_id is None
        assert session.notifications == []
        assert not session.completion_persisted

    async def test_shutdown_waits_for_pending_writes(self, orchestrator, mock_transcript_store):
        session = await begin(orchestrator)
        await answer_all_questions(orchestrator, session.session_id)
        await orchestrator.proceed(session.session_id)
        await orchestrator.proceed(session.session_id)

        await orchestrator.shutdown()

        mock_transcript_store.save.assert_awaited_once()
        assert session.consultation_id == "consultation-123"


@pytest.mark.unit
class TestSessionQueries:

    async def test_unknown_session(self, orchestrator):
        with pytest.raises(SessionError):
            await orchestrator.proceed("missing")
        with pytest.raises(SessionError):
            orchestrator.get_session_info("missing")

    async def test_session_info(self, orchestrator):
        session = await begin(orchestrator)
        info = orchestrator.get_session_info(session.session_id)

        assert info["state"]["view"] == "question"
        assert info["current_question"]["id"] == Q1
        assert info["current_question"]["number_in_block"] == 1
        assert info["current_block"]["theme"] == "Tema 1"
        assert info["progress"] == {"answered": 0, "total": 2, "block": 1, "blocks": 1}
        assert info["typing_indicator"] is None

    async def test_typing_indicator_text(self, orchestrator, mock_feedback_generator):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_feedback(request):
            entered.set()
            await release.wait()
            return "F1"

        mock_feedback_generator.generate_feedback.side_effect = slow_feedback
        session = await begin(orchestrator)

        task = asyncio.create_task(orchestrator.submit_answer(session.session_id, "A1"))
        await entered.wait()
        assert orchestrator.typing_indicator_text(session.session_id) == "Maestro está digitando..."

        release.set()
        await task
        assert orchestrator.typing_indicator_text(session.session_id) is None

    async def test_custom_agent_name(self, small_config, mock_transcript_store):
        orch = ConsultationOrchestrator(
            small_config,
            feedback_generator=AsyncMock(),
            diagnosis_generator=AsyncMock(),
            transcript_store=mock_transcript_store,
            agent_name="Ana"
        )
        session = await orch.start_consultation()
        session.state = session.state.model_copy(update={"is_typing": True})

        assert orch.typing_indicator_text(session.session_id) == "Ana está digitando..."

    async def test_initial_form_requires_mapping(self, orchestrator):
        session = await orchestrator.start_consultation()
        with pytest.raises(ValidationError):
            await orchestrator.submit_initial_form(session.session_id, "not a form")

    async def test_history(self, orchestrator, mock_transcript_store):
        await orchestrator.get_history("user-1")
        mock_transcript_store.list_for_user.assert_awaited_once_with("user-1")


@pytest.mark.unit
class TestServicesAndDebug:

    async def test_health_check(self, orchestrator):
        health = await orchestrator.health_check()

        assert health["overall"] == "healthy"
        assert health["reducer"] == "healthy"
        assert health["services"]["transcript_store"] == "healthy"

    async def test_health_check_degraded(self, orchestrator, mock_transcript_store):
        mock_transcript_store.health_check.return_value = {"healthy": False}
        health = await orchestrator.health_check()
        assert health["overall"] == "degraded"

    async def test_health_check_reports_gpt_metrics(self, orchestrator):
        orchestrator.gpt_service = Mock(get_metrics=Mock(return_value={"service_name": "GPTService"}))

        health = await orchestrator.health_check()

        assert health["metrics"] == {"gpt": {"service_name": "GPTService"}}

    def test_flow_debug_info(self, orchestrator):
        info = orchestrator.get_flow_debug_info()

        assert info["validation_issues"] == []
        assert info["diagnosis_parts"] == ["parte_1", "parte_2"]
        assert info["blocks"][0]["question_count"] == 2

    def test_lazy_service_creation(self, small_config):
        orch = ConsultationOrchestrator(small_config)

        with patch("consultor.core.orchestrator.GPTService") as gpt_cls, \
                patch("consultor.core.orchestrator.TranscriptStore") as store_cls:
            orch._ensure_services_initialized()

        gpt_cls.assert_called_once()
        store_cls.assert_called_once()
        assert orch.feedback_generator is orch.diagnosis_generator
        assert orch.feedback_generator.name == "Maestro"

