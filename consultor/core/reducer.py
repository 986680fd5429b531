# consultor/core/reducer.py
"""
Consultation reducer - pure FSM over the consultation views.

    welcome -> initial_form -> question <-> question -> block_comment
        -> question (next block) | generating_final_diagnosis
        -> final_summary -> module_recommendation
    any view -> welcome on restart

`reduce(state, action)` never performs I/O and never raises. An action whose
precondition does not hold (wrong view, out-of-range position, malformed
payload) leaves the state untouched; callers are expected to guard against
such requests before dispatching.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from consultor.models.consultation import BlockConfig, ConsultationConfig, FinalDiagnosisPart, Question
from consultor.models.flow_models import ConsultationView
from consultor.models.session_state import ConsultationState

logger = logging.getLogger(__name__)

V = ConsultationView

TransitionHandler = Callable[[ConsultationState, Dict[str, Any]], Optional[ConsultationState]]


class ActionType(str, Enum):
    """Actions the orchestrator can dispatch into the reducer"""

    GO_TO_INITIAL_FORM = "go_to_initial_form"
    SUBMIT_INITIAL_FORM = "submit_initial_form"
    SUBMIT_ANSWER = "submit_answer"
    RECEIVE_FEEDBACK = "receive_feedback"
    PROCEED_TO_NEXT_QUESTION = "proceed_to_next_question"
    SHOW_BLOCK_COMMENT = "show_block_comment"
    PROCEED_TO_NEXT_BLOCK = "proceed_to_next_block"
    REQUEST_FINAL_DIAGNOSIS = "request_final_diagnosis"
    RECEIVE_ALL_DIAGNOSIS_PARTS = "receive_all_diagnosis_parts"
    PROCEED_TO_MODULE_RECOMMENDATION = "proceed_to_module_recommendation"
    RESTART = "restart"
    SET_LOADING = "set_loading"
    SET_TYPING_INDICATOR = "set_typing_indicator"


@dataclass(frozen=True)
class Action:
    type: ActionType
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def go_to_initial_form(cls) -> "Action":
        return cls(ActionType.GO_TO_INITIAL_FORM)

    @classmethod
    def submit_initial_form(cls, form_data: Dict[str, Any]) -> "Action":
        return cls(ActionType.SUBMIT_INITIAL_FORM, {"form_data": form_data})

    @classmethod
    def submit_answer(cls, question_id: str, answer: str) -> "Action":
        return cls(ActionType.SUBMIT_ANSWER, {"question_id": question_id, "answer": answer})

    @classmethod
    def receive_feedback(cls, question_id: str, feedback: str) -> "Action":
        return cls(ActionType.RECEIVE_FEEDBACK, {"question_id": question_id, "feedback": feedback})

    @classmethod
    def proceed_to_next_question(cls) -> "Action":
        return cls(ActionType.PROCEED_TO_NEXT_QUESTION)

    @classmethod
    def show_block_comment(cls) -> "Action":
        return cls(ActionType.SHOW_BLOCK_COMMENT)

    @classmethod
    def proceed_to_next_block(cls) -> "Action":
        return cls(ActionType.PROCEED_TO_NEXT_BLOCK)

    @classmethod
    def request_final_diagnosis(cls) -> "Action":
        return cls(ActionType.REQUEST_FINAL_DIAGNOSIS)

    @classmethod
    def receive_all_diagnosis_parts(cls, parts: List[FinalDiagnosisPart]) -> "Action":
        return cls(ActionType.RECEIVE_ALL_DIAGNOSIS_PARTS, {"parts": list(parts)})

    @classmethod
    def proceed_to_module_recommendation(cls) -> "Action":
        return cls(ActionType.PROCEED_TO_MODULE_RECOMMENDATION)

    @classmethod
    def restart(cls) -> "Action":
        return cls(ActionType.RESTART)

    @classmethod
    def set_loading(cls, is_loading: bool) -> "Action":
        return cls(ActionType.SET_LOADING, {"is_loading": is_loading})

    @classmethod
    def set_typing_indicator(cls, is_typing: bool) -> "Action":
        return cls(ActionType.SET_TYPING_INDICATOR, {"is_typing": is_typing})


@dataclass
class Transition:
    """A legal transition: which views accept the action and where it leads"""
    action: ActionType
    handler: TransitionHandler
    from_views: Optional[Tuple[ConsultationView, ...]] = None  # None = any view
    to_view: Optional[ConsultationView] = None  # None = view unchanged
    description: str = ""


# ===========================================
# SELECTORS
# ===========================================

def current_block(state: ConsultationState, config: ConsultationConfig) -> Optional[BlockConfig]:
    if 0 <= state.current_block_index < len(config.blocks):
        return config.blocks[state.current_block_index]
    return None


def current_question(state: ConsultationState, config: ConsultationConfig) -> Optional[Question]:
    block = current_block(state, config)
    if block is None or state.view != V.QUESTION:
        return None
    if 0 <= state.current_question_index < block.question_count:
        return block.questions[state.current_question_index]
    return None


def is_last_question_in_block(state: ConsultationState, config: ConsultationConfig) -> bool:
    block = current_block(state, config)
    return block is not None and state.current_question_index == block.question_count - 1


def is_last_block(state: ConsultationState, config: ConsultationConfig) -> bool:
    return state.current_block_index == len(config.blocks) - 1


def progress(state: ConsultationState, config: ConsultationConfig) -> Dict[str, int]:
    return {
        "answered": len(state.user_answers),
        "total": config.total_questions,
        "block": state.current_block_index + 1,
        "blocks": len(config.blocks),
    }


class ConsultationReducer:
    """
    Transition table plus pure transition functions.

    The reducer is bound to an interview definition so that position guards
    (question counts, number of blocks, diagnosis parts) can be checked
    without any ambient global configuration.
    """

    def __init__(self, config: ConsultationConfig):
        self.config = config

        self.transitions: List[Transition] = []

        # Quick lookup: {action: Transition}
        self._transition_map: Dict[ActionType, Transition] = {}

        self._setup_transitions()
        self._build_transition_map()

    def _setup_transitions(self):
        """Define all legal transitions"""

        # ===========================================
        # INTAKE
        # ===========================================

        self.add_transition(
            ActionType.GO_TO_INITIAL_FORM,
            self._go_to_initial_form,
            from_views=(V.WELCOME,),
            to_view=V.INITIAL_FORM,
            description="Welcome screen -> initial form"
        )

        self.add_transition(
            ActionType.SUBMIT_INITIAL_FORM,
            self._submit_initial_form,
            from_views=(V.WELCOME, V.INITIAL_FORM),
            to_view=V.QUESTION,
            description="Record form data and start at block 0 / question 0"
        )

        # ===========================================
        # QUESTION LOOP
        # ===========================================

        self.add_transition(
            ActionType.SUBMIT_ANSWER,
            self._submit_answer,
            from_views=(V.QUESTION,),
            description="Record answer for the current question, mark busy"
        )

        self.add_transition(
            ActionType.RECEIVE_FEEDBACK,
            self._receive_feedback,
            from_views=(V.QUESTION,),
            description="Record feedback for an answered question, clear busy"
        )

        self.add_transition(
            ActionType.PROCEED_TO_NEXT_QUESTION,
            self._proceed_to_next_question,
            from_views=(V.QUESTION,),
            to_view=V.QUESTION,
            description="Advance within the current block"
        )

        self.add_transition(
            ActionType.SHOW_BLOCK_COMMENT,
            self._show_block_comment,
            from_views=(V.QUESTION,),
            to_view=V.BLOCK_COMMENT,
            description="Last question of the block answered -> closing comment"
        )

        self.add_transition(
            ActionType.PROCEED_TO_NEXT_BLOCK,
            self._proceed_to_next_block,
            from_views=(V.BLOCK_COMMENT,),
            to_view=V.QUESTION,
            description="Block comment -> first question of the next block"
        )

        # ===========================================
        # FINAL DIAGNOSIS
        # ===========================================

        self.add_transition(
            ActionType.REQUEST_FINAL_DIAGNOSIS,
            self._request_final_diagnosis,
            from_views=(V.BLOCK_COMMENT,),
            to_view=V.GENERATING_FINAL_DIAGNOSIS,
            description="Comment of the last block -> generate diagnosis"
        )

        self.add_transition(
            ActionType.RECEIVE_ALL_DIAGNOSIS_PARTS,
            self._receive_all_diagnosis_parts,
            from_views=(V.GENERATING_FINAL_DIAGNOSIS,),
            to_view=V.FINAL_SUMMARY,
            description="Install the complete ordered part list"
        )

        self.add_transition(
            ActionType.PROCEED_TO_MODULE_RECOMMENDATION,
            self._proceed_to_module_recommendation,
            from_views=(V.FINAL_SUMMARY,),
            to_view=V.MODULE_RECOMMENDATION,
            description="Final summary -> module recommendation"
        )

        # ===========================================
        # GLOBAL
        # ===========================================

        self.add_transition(
            ActionType.RESTART,
            self._restart,
            to_view=V.WELCOME,
            description="Reset to the initial aggregate from any view"
        )

        self.add_transition(
            ActionType.SET_LOADING,
            self._set_loading,
            description="Toggle the busy flag"
        )

        self.add_transition(
            ActionType.SET_TYPING_INDICATOR,
            self._set_typing_indicator,
            description="Toggle the typing indicator flag"
        )

    def add_transition(
        self,
        action: ActionType,
        handler: TransitionHandler,
        from_views: Optional[Tuple[ConsultationView, ...]] = None,
        to_view: Optional[ConsultationView] = None,
        description: str = ""
    ):
        """Add a transition to the table"""
        self.transitions.append(Transition(
            action=action,
            handler=handler,
            from_views=from_views,
            to_view=to_view,
            description=description
        ))

    def _build_transition_map(self):
        self._transition_map = {t.action: t for t in self.transitions}

    # ===========================================
    # DISPATCH
    # ===========================================

    def reduce(self, state: ConsultationState, action: Action) -> ConsultationState:
        """
        Apply an action to the state.

        Returns the new state, or the unchanged state if the action is not
        legal in the current view or its payload is malformed.
        """
        transition = self._transition_map.get(getattr(action, "type", None))
        if transition is None:
            logger.warning(f"Unknown action ignored: {action!r}")
            return state

        if transition.from_views is not None and state.view not in transition.from_views:
            logger.debug(f"{transition.action.value} ignored in view {state.view.value}")
            return state

        try:
            new_state = transition.handler(state, action.payload or {})
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"{transition.action.value} ignored, malformed payload: {e}")
            return state

        if new_state is None:
            logger.debug(f"{transition.action.value} ignored, precondition not met")
            return state

        return new_state

    __call__ = reduce

    def can_apply(self, state: ConsultationState, action: Action) -> bool:
        """True if the action would change the state"""
        return self.reduce(state, action) != state

    def get_valid_actions(self, view: ConsultationView) -> List[ActionType]:
        return [
            t.action for t in self.transitions
            if t.from_views is None or view in t.from_views
        ]

    # ===========================================
    # TRANSITION FUNCTIONS
    # ===========================================

    def _go_to_initial_form(self, state, payload):
        return state.model_copy(update={"view": V.INITIAL_FORM})

    def _submit_initial_form(self, state, payload):
        form_data = payload["form_data"]
        if not isinstance(form_data, dict):
            return None
        return state.model_copy(update={
            "initial_form_data": dict(form_data),
            "initial_form_completed": True,
            "view": V.QUESTION,
            "current_block_index": 0,
            "current_question_index": 0,
        })

    def _submit_answer(self, state, payload):
        question_id = payload["question_id"]
        answer = payload["answer"]
        question = current_question(state, self.config)

        if question is None or question.id != question_id or not isinstance(answer, str):
            return None
        if question_id in state.user_answers:
            return None

        return state.model_copy(update={
            "user_answers": {**state.user_answers, question_id: answer},
            "is_loading": True,
            "is_typing": True,
        })

    def _receive_feedback(self, state, payload):
        question_id = payload["question_id"]
        feedback = payload["feedback"]

        if question_id not in state.user_answers or question_id in state.ai_feedbacks:
            return None
        if not isinstance(feedback, str):
            return None

        return state.model_copy(update={
            "ai_feedbacks": {**state.ai_feedbacks, question_id: feedback},
            "is_loading": False,
            "is_typing": False,
        })

    def _current_question_answered(self, state) -> bool:
        question = current_question(state, self.config)
        return question is not None and question.id in state.user_answers

    def _proceed_to_next_question(self, state, payload):
        block = current_block(state, self.config)
        if block is None or not self._current_question_answered(state):
            return None
        if state.current_question_index + 1 >= block.question_count:
            return None

        return state.model_copy(update={
            "current_question_index": state.current_question_index + 1,
        })

    def _show_block_comment(self, state, payload):
        if not is_last_question_in_block(state, self.config):
            return None
        if not self._current_question_answered(state):
            return None
        return state.model_copy(update={"view": V.BLOCK_COMMENT})

    def _proceed_to_next_block(self, state, payload):
        next_index = state.current_block_index + 1
        if next_index >= len(self.config.blocks):
            return None

        return state.model_copy(update={
            "current_block_index": next_index,
            "current_question_index": 0,
            "view": V.QUESTION,
        })

    def _request_final_diagnosis(self, state, payload):
        if not is_last_block(state, self.config):
            return None

        return state.model_copy(update={
            "view": V.GENERATING_FINAL_DIAGNOSIS,
            "final_diagnosis_parts": [],
            "is_loading": True,
            "is_typing": True,
        })

    def _receive_all_diagnosis_parts(self, state, payload):
        parts = [FinalDiagnosisPart.model_validate(p) for p in payload["parts"]]
        expected = [d.part_id for d in self.config.diagnosis_parts]
        if [p.part_id for p in parts] != expected:
            return None

        return state.model_copy(update={
            "final_diagnosis_parts": parts,
            "is_loading": False,
            "is_typing": False,
            "view": V.FINAL_SUMMARY,
        })

    def _proceed_to_module_recommendation(self, state, payload):
        return state.model_copy(update={"view": V.MODULE_RECOMMENDATION})

    def _restart(self, state, payload):
        return ConsultationState()

    def _set_loading(self, state, payload):
        is_loading = payload["is_loading"]
        if not isinstance(is_loading, bool):
            return None
        return state.model_copy(update={"is_loading": is_loading})

    def _set_typing_indicator(self, state, payload):
        is_typing = payload["is_typing"]
        if not isinstance(is_typing, bool):
            return None
        return state.model_copy(update={"is_typing": is_typing})

    # ===========================================
    # DEBUGGING
    # ===========================================

    def get_flow_summary(self) -> Dict[str, Any]:
        """Get a summary of the transition table for debugging"""
        return {
            "total_transitions": len(self.transitions),
            "views": [v.value for v in ConsultationView],
            "actions": [a.value for a in ActionType],
            "transitions": [
                {
                    "action": t.action.value,
                    "from": [v.value for v in t.from_views] if t.from_views else "any",
                    "to": t.to_view.value if t.to_view else "unchanged",
                    "description": t.description,
                }
                for t in self.transitions
            ],
        }

    def validate(self) -> List[str]:
        """
        Check that every view is reachable from the welcome view.

        Returns:
            List of problems found (empty if the table is consistent)
        """
        reachable = {V.WELCOME}
        changed = True
        while changed:
            changed = False
            for t in self.transitions:
                if t.to_view is None or t.to_view in reachable:
                    continue
                if t.from_views is None or reachable.intersection(t.from_views):
                    reachable.add(t.to_view)
                    changed = True

        return [
            f"View not reachable: {view.value}"
            for view in ConsultationView
            if view not in reachable
        ]
