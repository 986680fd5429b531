# consultor/prompts/common_prompts.py
"""
Fixed user-facing texts: fallbacks, notifications and status lines.
"""

# ============================================================================
# FALLBACKS
# ============================================================================

FEEDBACK_FALLBACK = "Desculpe, não consegui processar sua resposta no momento."

DIAGNOSIS_PART_FALLBACK = "Não foi possível gerar esta parte do diagnóstico."

# ============================================================================
# NOTIFICATIONS
# ============================================================================

FEEDBACK_ERROR_TITLE = "Erro"
FEEDBACK_ERROR_MESSAGE = "Falha ao gerar feedback."

DIAGNOSIS_ERROR_TITLE = "Erro no Diagnóstico"
DIAGNOSIS_ERROR_MESSAGE = "Houve um problema ao gerar seu diagnóstico final. Algumas partes podem estar incompletas."

SAVE_SUCCESS_TITLE = "Consulta Salva!"
SAVE_SUCCESS_MESSAGE = "Seu diagnóstico foi salvo com sucesso."

SAVE_ERROR_TITLE = "Erro ao Salvar"
SAVE_ERROR_MESSAGE = "Não foi possível salvar os resultados da sua consulta. Seu diagnóstico continua disponível nesta tela."

# ============================================================================
# STATUS
# ============================================================================

TYPING_INDICATOR = "{agent_name} está digitando..."
