# consultor/models/flow_models.py

from enum import Enum


class ConsultationView(str, Enum):
    WELCOME = "welcome"
    INITIAL_FORM = "initial_form"
    QUESTION = "question"
    BLOCK_COMMENT = "block_comment"
    GENERATING_FINAL_DIAGNOSIS = "generating_final_diagnosis"
    FINAL_SUMMARY = "final_summary"
    MODULE_RECOMMENDATION = "module_recommendation"


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
