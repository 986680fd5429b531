# tests/conftest.py
"""
Shared fixtures: small interview definitions in the maestro layout.
"""

import copy

import pytest

from consultor.core.definition_loader import load_consultation_definition


def build_definition(questions_per_block=(2,), part_count=2):
    """Interview definition dict with the given number of blocks/questions/parts"""
    steps = [
        {
            "id": "inicio",
            "tipo": "formulario",
            "titulo_formulario": "Vamos começar",
            "descricao_formulario": "Conte um pouco sobre o seu negócio.",
            "campos_formulario_ids": ["nome_negocio", "tipo_negocio"],
        }
    ]
    for b, count in enumerate(questions_per_block, start=1):
        steps.append({
            "id": f"bloco_{b}",
            "tipo": "perguntas",
            "tema": f"Tema {b}",
            "numero_perguntas": count,
            "comentario_final_bloco": f"Fechamento do bloco {b}",
            "perguntas": [f"Pergunta {b}.{q}?" for q in range(1, count + 1)],
        })

    return {
        "identidade": {
            "nome": "Maestro",
            "missao": "Ajudar pequenos negócios",
            "estilo": "Direto",
            "tom_de_voz_detalhado": "Acolhedor",
        },
        "modo_de_interacao": {"abertura": "Vamos analisar isso juntos."},
        "etapas_consulta": steps,
        "diagnostico_final_estrutura": {
            "id": "diagnostico_final",
            "titulo_geral": "Seu Diagnóstico",
            "descricao_geral": "O que aprendemos sobre o seu negócio.",
            "partes_estrutura": [
                {
                    "id_parte": f"parte_{p}",
                    "titulo_parte": f"Parte {p}",
                    "descricao_orientadora_para_ia": f"Orientação {p}",
                }
                for p in range(1, part_count + 1)
            ],
        },
        "finalizacao_geral": {"mensagem": "Obrigado pela conversa!"},
    }


@pytest.fixture
def definition_dict():
    """1 block with 2 questions, 2 diagnosis parts"""
    return copy.deepcopy(build_definition())


@pytest.fixture
def small_config():
    """1 block with 2 questions, 2 diagnosis parts"""
    return load_consultation_definition(build_definition())


@pytest.fixture
def three_block_config():
    """3 blocks (2, 3, 1 questions), 3 diagnosis parts"""
    return load_consultation_definition(build_definition(questions_per_block=(2, 3, 1), part_count=3))


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (may require external services)")
