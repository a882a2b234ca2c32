"""Static rate tables: internal/interstate ICMS rates, FCP, DIFAL CFOPs and CST map."""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from difal.core.settings import settings
from difal.models import Destinacao, Metodologia

RULES_PATH = settings.RATE_TABLES_PATH or Path(__file__).with_name("rate_tables.json")
with Path(RULES_PATH).open("r", encoding="utf-8") as handler:
    RULES = json.load(handler)


class RateLookupError(LookupError):
    """UF ou alíquota não encontrada nas tabelas."""


@dataclass(frozen=True)
class EstadoInfo:
    uf: str
    nome: str
    aliq_interna: Decimal
    fcp: Decimal
    metodologia: Metodologia
    regiao: str
    codigo_ibge: str
    fcp_max: Optional[Decimal] = None


def _estado(raw: Dict[str, Any]) -> EstadoInfo:
    return EstadoInfo(
        uf=raw["uf"],
        nome=raw["nome"],
        aliq_interna=Decimal(str(raw["aliq_interna"])),
        fcp=Decimal(str(raw.get("fcp", 0))),
        metodologia=Metodologia(raw.get("metodologia", "base-dupla")),
        regiao=raw.get("regiao", ""),
        codigo_ibge=str(raw.get("codigo_ibge", "")),
        fcp_max=Decimal(str(raw["fcp_max"])) if raw.get("fcp_max") is not None else None,
    )


ESTADOS: Dict[str, EstadoInfo] = {raw["uf"]: _estado(raw) for raw in RULES.get("estados", [])}
UF_POR_CODIGO_IBGE = {estado.codigo_ibge: uf for uf, estado in ESTADOS.items() if estado.codigo_ibge}

_INTERESTADUAIS = RULES.get("aliquotas_interestaduais", {})
ALIQ_INTERESTADUAL_PADRAO = Decimal(str(_INTERESTADUAIS.get("padrao", 12)))
ALIQ_INTERESTADUAL_REDUZIDA = Decimal(str(_INTERESTADUAIS.get("reduzida", 7)))
ORIGENS_REDUZIDA = set(_INTERESTADUAIS.get("origens_reduzida", []))
DESTINOS_REDUZIDA = set(_INTERESTADUAIS.get("destinos_reduzida", []))

CFOP_DESTINACAO = {
    str(cfop): Destinacao(destinacao)
    for destinacao, cfops in RULES.get("cfops_difal", {}).items()
    for cfop in cfops
}
CST_TABLE: Dict[str, Dict[str, str]] = RULES.get("cst_icms", {})
CST_ALIQUOTA_REFERENCIA = Decimal(str(RULES.get("cst_aliquota_referencia", 18)))


def obter_estado(uf: Optional[str]) -> EstadoInfo:
    code = (uf or "").strip().upper()
    if not code:
        raise RateLookupError("UF não informada")
    try:
        return ESTADOS[code]
    except KeyError:
        raise RateLookupError(f"UF inválida ou sem alíquota cadastrada: {code}") from None


def aliquota_interestadual(uf_origem: str, uf_destino: str) -> Decimal:
    """7% das regiões Sul/Sudeste (exceto ES) para N/NE/CO e ES; 12% nos demais casos."""

    origem = obter_estado(uf_origem)
    destino = obter_estado(uf_destino)
    if origem.uf in ORIGENS_REDUZIDA and destino.uf in DESTINOS_REDUZIDA:
        return ALIQ_INTERESTADUAL_REDUZIDA
    return ALIQ_INTERESTADUAL_PADRAO


def destinacao_cfop(cfop: Any) -> Optional[Destinacao]:
    return CFOP_DESTINACAO.get(str(cfop or "").strip().replace(".", ""))


def uf_por_codigo_municipio(cod_mun: Any) -> Optional[str]:
    digits = "".join(ch for ch in str(cod_mun or "") if ch.isdigit())
    if len(digits) < 2:
        return None
    return UF_POR_CODIGO_IBGE.get(digits[:2])
