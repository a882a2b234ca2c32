"""Resolution of user configured fiscal benefits for a single item.

The item's own configuration always wins over the global one and the two are
never merged: as soon as the item carries a benefit or a manual FCP, the global
configuration is ignored for it. A benefit whose required fields are missing or
out of range stays configured (so it can still be edited) but resolves to no
effect until completed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Tuple

from difal.core.logger import log_event
from difal.models import (
    Beneficio,
    BenefitConfig,
    Isencao,
    ReducaoAliquotaDestino,
    ReducaoAliquotaOrigem,
    ReducaoBase,
)

CHAVE_GLOBAL = "global"

BENEFICIO_LABELS = {
    "reducao-base": "Redução de Base",
    "reducao-aliquota-origem": "Redução Alíquota Origem",
    "reducao-aliquota-destino": "Redução Alíquota Destino",
    "isencao": "Isenção",
}


@dataclass(frozen=True)
class ResolvedBenefit:
    origem: str = "nenhuma"
    configuracao: Optional[BenefitConfig] = None
    beneficio: Optional[Beneficio] = None
    fcp_manual: Optional[Decimal] = None
    pendencias: Tuple[str, ...] = ()

    @property
    def configurado(self) -> bool:
        return self.configuracao is not None and self.configuracao.beneficio is not None

    @property
    def label(self) -> str:
        if self.beneficio is None:
            return "Nenhum"
        return BENEFICIO_LABELS[self.beneficio.tipo]


SEM_BENEFICIO = ResolvedBenefit()


def _percentual_valido(value: Optional[float]) -> bool:
    return value is not None and 0 <= value <= 100


def validar_beneficio(beneficio: Beneficio) -> Optional[str]:
    """Retorna a pendência do benefício, ou None quando ele está completo."""

    if isinstance(beneficio, ReducaoBase):
        carga = beneficio.carga_efetiva_desejada
        if carga is None or carga <= 0 or carga > 100:
            return f"Carga efetiva não informada ou inválida (deve ser > 0): {carga if carga is not None else 'vazio'}"
        return None
    if isinstance(beneficio, ReducaoAliquotaOrigem):
        if not _percentual_valido(beneficio.aliq_origem_efetiva):
            return f"Alíquota origem não informada ou inválida (deve ser >= 0): {beneficio.aliq_origem_efetiva if beneficio.aliq_origem_efetiva is not None else 'vazio'}"
        return None
    if isinstance(beneficio, ReducaoAliquotaDestino):
        if not _percentual_valido(beneficio.aliq_destino_efetiva):
            return f"Alíquota destino não informada ou inválida (deve ser >= 0): {beneficio.aliq_destino_efetiva if beneficio.aliq_destino_efetiva is not None else 'vazio'}"
        return None
    if isinstance(beneficio, Isencao):
        return None
    raise TypeError(f"Tipo de benefício desconhecido: {type(beneficio).__name__}")


def selecionar_configuracao(
    item_id: str,
    beneficios_globais: Optional[BenefitConfig],
    configuracoes_itens: Optional[Mapping[str, BenefitConfig]],
) -> Tuple[str, Optional[BenefitConfig]]:
    configuracoes_itens = configuracoes_itens or {}
    individual = configuracoes_itens.get(item_id)
    if individual is not None and individual.tem_configuracao:
        return "individual", individual
    global_config = beneficios_globais or configuracoes_itens.get(CHAVE_GLOBAL)
    if global_config is not None and global_config.tem_configuracao:
        return "global", global_config
    return "nenhuma", None


def resolver_beneficio(
    item_id: str,
    beneficios_globais: Optional[BenefitConfig] = None,
    configuracoes_itens: Optional[Mapping[str, BenefitConfig]] = None,
) -> ResolvedBenefit:
    origem, config = selecionar_configuracao(item_id, beneficios_globais, configuracoes_itens)
    if config is None:
        return SEM_BENEFICIO

    pendencias = []
    beneficio = config.beneficio
    if beneficio is not None:
        pendencia = validar_beneficio(beneficio)
        if pendencia:
            pendencias.append(f"{BENEFICIO_LABELS[beneficio.tipo]}: {pendencia}")
            beneficio = None

    fcp_manual = None
    if config.fcp_manual is not None:
        if _percentual_valido(config.fcp_manual):
            fcp_manual = Decimal(str(config.fcp_manual))
        else:
            pendencias.append(f"FCP manual inválido (deve estar entre 0 e 100): {config.fcp_manual}")

    if pendencias:
        log_event(
            "benefit_resolver",
            "DEBUG",
            "Configuração incompleta tratada como sem efeito",
            {"item": item_id, "origem": origem, "pendencias": pendencias},
        )

    return ResolvedBenefit(
        origem=origem,
        configuracao=config,
        beneficio=beneficio,
        fcp_manual=fcp_manual,
        pendencias=tuple(pendencias),
    )
