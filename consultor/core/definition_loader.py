# consultor/core/definition_loader.py
"""
Interview definition loader.

Turns a static interview definition (JSON file or parsed dict in the
"maestro" layout) into an immutable ConsultationConfig:

- the initial form, from the step with id 'inicio' and tipo 'formulario'
- the ordered question blocks, from every step with tipo 'perguntas'
- the final diagnosis structure, from 'diagnostico_final_estrutura'

Question ids are generated here as '{block_id}_pergunta_{n}' so that
answers can only ever be keyed by ids coming from the loaded definition.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import ValidationError as PydanticValidationError

from consultor.core.exceptions import ConfigurationError
from consultor.models.consultation import (
    BlockConfig,
    ConsultantIdentity,
    ConsultationConfig,
    DiagnosisPartDescriptor,
    FieldKind,
    InitialFormConfig,
    InitialFormField,
    Question,
)

logger = logging.getLogger(__name__)

INITIAL_FORM_STEP_ID = "inicio"

# Known initial form fields: id -> (prompt, kind, options)
FORM_FIELD_CATALOG: Dict[str, tuple] = {
    "nome_negocio": ("Qual o nome do seu negócio?", FieldKind.TEXT, []),
    "tipo_negocio": (
        "Seu negócio é focado em?",
        FieldKind.CHOICE,
        ["Produtos", "Serviços", "Produtos e Serviços"],
    ),
    "tempo_mercado": ("Há quanto tempo seu negócio está no mercado?", FieldKind.TEXT, []),
    "formalizado": (
        "Seu negócio é formalizado (possui CNPJ)?",
        FieldKind.CHOICE,
        ["Sim", "Não", "Em processo"],
    ),
    "trabalha_sozinho_ou_equipe": (
        "Você trabalha mais sozinho(a) ou conta com uma equipe/apoio familiar?",
        FieldKind.CHOICE,
        ["Sozinho(a)", "Com equipe/sócios", "Com apoio familiar/freelancers"],
    ),
    "tentou_consultoria_apoio_antes": (
        "Você já buscou algum tipo de consultoria ou apoio especializado para o seu negócio antes?",
        FieldKind.CHOICE,
        ["Sim, e ajudou", "Sim, mas não resolveu", "Não, primeira vez"],
    ),
    "faturamento_medio_opcional": (
        "Qual é o faturamento médio mensal do seu negócio? (opcional)",
        FieldKind.NUMBER,
        [],
    ),
    "desafios_principais_percebidos": (
        "Em poucas palavras, qual você considera o seu maior desafio no negócio atualmente?",
        FieldKind.TEXT,
        [],
    ),
}


def make_question_id(block_id: str, number_in_block: int) -> str:
    """Build the id of the n-th (1-based) question of a block"""
    return f"{block_id}_pergunta_{number_in_block}"


def load_consultation_definition(source: Union[str, Path, Dict[str, Any]]) -> ConsultationConfig:
    """
    Load and validate an interview definition.

    Args:
        source: Path to a JSON file, or an already-parsed definition dict

    Returns:
        Immutable ConsultationConfig

    Raises:
        ConfigurationError: If the file cannot be read or the structure is invalid
    """
    if isinstance(source, dict):
        raw = source
    else:
        raw = _read_json(Path(source))

    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError("Interview definition is empty", component="definition")

    steps = raw.get("etapas_consulta")
    if not isinstance(steps, list):
        raise ConfigurationError(
            "'etapas_consulta' is missing or not a list",
            component="etapas_consulta"
        )

    try:
        config = ConsultationConfig(
            initial_form=_parse_initial_form(steps),
            blocks=_parse_blocks(steps),
            identity=_parse_identity(raw),
            closing_message=_parse_closing_message(raw),
            **_parse_diagnosis(raw),
        )
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid interview definition: {e.errors()[0].get('msg', str(e))}",
            component="definition",
            details={"errors": [err.get("msg") for err in e.errors()]}
        ) from e

    logger.info(
        f"Loaded interview definition: {len(config.blocks)} blocks, "
        f"{config.total_questions} questions, {len(config.diagnosis_parts)} diagnosis parts"
    )
    return config


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Interview definition not found: {path}",
            component="definition"
        ) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Interview definition is not valid JSON: {e}",
            component="definition",
            details={"path": str(path)}
        ) from e


def _parse_initial_form(steps: List[Dict[str, Any]]) -> InitialFormConfig:
    form_step = next(
        (s for s in steps
         if isinstance(s, dict) and s.get("id") == INITIAL_FORM_STEP_ID and s.get("tipo") == "formulario"),
        None
    )
    if form_step is None:
        raise ConfigurationError(
            "Initial form step (id 'inicio', tipo 'formulario') not found",
            component="etapas_consulta"
        )

    field_ids = form_step.get("campos_formulario_ids")
    if not isinstance(field_ids, list):
        raise ConfigurationError(
            "'campos_formulario_ids' is missing or not a list",
            component="inicio"
        )
    for key in ("titulo_formulario", "descricao_formulario"):
        if not isinstance(form_step.get(key), str):
            raise ConfigurationError(f"'{key}' is missing or not a string", component="inicio")

    return InitialFormConfig(
        id=form_step["id"],
        title=form_step["titulo_formulario"],
        description=form_step["descricao_formulario"],
        fields=[_build_form_field(field_id) for field_id in field_ids],
    )


def _build_form_field(field_id: str) -> InitialFormField:
    if field_id in FORM_FIELD_CATALOG:
        prompt, kind, options = FORM_FIELD_CATALOG[field_id]
        return InitialFormField(id=field_id, prompt=prompt, kind=kind, options=options)

    logger.warning(f"Unmapped initial form field id: {field_id}. Using free-text fallback.")
    return InitialFormField(
        id=field_id,
        prompt=f"Detalhe sobre {field_id.replace('_', ' ')}:",
        kind=FieldKind.TEXT,
    )


def _parse_blocks(steps: List[Dict[str, Any]]) -> List[BlockConfig]:
    block_steps = [s for s in steps if isinstance(s, dict) and s.get("tipo") == "perguntas"]
    blocks = []

    for block_index, step in enumerate(block_steps):
        block_id = step.get("id")
        if not isinstance(block_id, str) or not isinstance(step.get("tema"), str) \
                or not isinstance(step.get("comentario_final_bloco"), str):
            raise ConfigurationError(
                "Invalid question block structure",
                component=str(block_id or f"block #{block_index}")
            )

        raw_questions = step.get("perguntas")
        if not isinstance(raw_questions, list) or not raw_questions:
            raise ConfigurationError(
                f"No questions defined for block '{block_id}'",
                component=block_id
            )

        declared = step.get("numero_perguntas")
        if declared is not None and declared != len(raw_questions):
            logger.warning(
                f"Block '{block_id}' declares {declared} questions but defines "
                f"{len(raw_questions)}. Using the defined questions."
            )

        questions = [
            _build_question(raw, block_id, block_index, index_in_block)
            for index_in_block, raw in enumerate(raw_questions)
        ]
        blocks.append(BlockConfig(
            id=block_id,
            index=block_index,
            theme=step["tema"],
            question_count=len(questions),
            closing_comment=step["comentario_final_bloco"],
            questions=questions,
        ))

    if not blocks:
        raise ConfigurationError("No question blocks defined", component="etapas_consulta")
    return blocks


def _build_question(raw: Any, block_id: str, block_index: int, index_in_block: int) -> Question:
    if isinstance(raw, str):
        raw = {"texto": raw}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Question #{index_in_block + 1} must be a string or an object",
            component=block_id
        )

    text = raw.get("texto") or raw.get("text")
    if not isinstance(text, str) or not text.strip():
        raise ConfigurationError(
            f"Question #{index_in_block + 1} has no text",
            component=block_id
        )

    return Question(
        id=make_question_id(block_id, index_in_block + 1),
        block_id=block_id,
        block_index=block_index,
        index_in_block=index_in_block,
        text=text,
        intent=raw.get("intencao"),
        reply_guide=raw.get("replica_guia"),
        tone_adjustments=raw.get("ajuste_de_tom"),
        example_reactions=raw.get("reacoes_possiveis"),
    )


def _parse_diagnosis(raw: Dict[str, Any]) -> Dict[str, Any]:
    diagnosis = raw.get("diagnostico_final_estrutura")
    if not isinstance(diagnosis, dict):
        raise ConfigurationError(
            "'diagnostico_final_estrutura' not found",
            component="diagnostico_final_estrutura"
        )
    for key in ("id", "titulo_geral", "descricao_geral"):
        if not isinstance(diagnosis.get(key), str):
            raise ConfigurationError(
                f"'{key}' is missing or not a string",
                component="diagnostico_final_estrutura"
            )

    parts = diagnosis.get("partes_estrutura")
    if not isinstance(parts, list):
        raise ConfigurationError(
            "'partes_estrutura' is missing or not a list",
            component="diagnostico_final_estrutura"
        )

    descriptors = []
    for part in parts:
        if not isinstance(part, dict) or not all(isinstance(part.get(k), str) for k in
                   ("id_parte", "titulo_parte", "descricao_orientadora_para_ia")):
            raise ConfigurationError(
                "Invalid item in 'partes_estrutura'",
                component="diagnostico_final_estrutura",
                details={"part": part}
            )
        descriptors.append(DiagnosisPartDescriptor(
            part_id=part["id_parte"],
            title=part["titulo_parte"],
            ai_guidance=part["descricao_orientadora_para_ia"],
        ))

    return {
        "diagnosis_id": diagnosis["id"],
        "diagnosis_title": diagnosis["titulo_geral"],
        "diagnosis_description": diagnosis["descricao_geral"],
        "diagnosis_parts": descriptors,
    }


def _parse_identity(raw: Dict[str, Any]) -> ConsultantIdentity:
    identity = raw.get("identidade") or {}
    interaction = raw.get("modo_de_interacao") or {}
    return ConsultantIdentity(
        name=identity.get("nome", "Maestro"),
        mission=identity.get("missao", ""),
        style=identity.get("estilo", ""),
        tone_of_voice=identity.get("tom_de_voz_detalhado", ""),
        opening=interaction.get("abertura", ""),
    )


def _parse_closing_message(raw: Dict[str, Any]) -> str:
    closing = raw.get("finalizacao_geral")
    if isinstance(closing, dict):
        return closing.get("mensagem", "")
    if isinstance(closing, str):
        return closing
    return ""
