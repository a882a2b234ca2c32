from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union

from difal.models import CalculationResult, Destinacao, DifalItem, Totalizers


def _to_decimal(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def _round(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def obter_totalizadores(resultados: Iterable[CalculationResult]) -> Totalizers:
    """Soma os resultados sem erro; itens com erro só entram na contagem."""

    resultados = list(resultados)
    totals = {"base": Decimal("0"), "difal": Decimal("0"), "fcp": Decimal("0"), "total": Decimal("0"), "economia": Decimal("0")}
    com_difal = sem_difal = com_beneficio = com_fcp_manual = com_erro = 0

    for resultado in resultados:
        if resultado.erro:
            com_erro += 1
            continue
        totals["base"] += _to_decimal(resultado.base)
        totals["difal"] += _to_decimal(resultado.difal)
        totals["fcp"] += _to_decimal(resultado.fcp)
        totals["total"] += _to_decimal(resultado.total_recolher)
        if resultado.total_recolher > 0:
            com_difal += 1
        else:
            sem_difal += 1
        if resultado.fcp_manual_aplicado:
            com_fcp_manual += 1
        if resultado.beneficio_aplicado:
            com_beneficio += 1
            totals["economia"] += _to_decimal(resultado.total_sem_beneficio) - _to_decimal(resultado.total_recolher)

    return Totalizers(
        total_itens=len(resultados),
        total_base=_round(totals["base"]),
        total_difal=_round(totals["difal"]),
        total_fcp=_round(totals["fcp"]),
        total_recolher=_round(totals["total"]),
        itens_com_difal=com_difal,
        itens_sem_difal=sem_difal,
        itens_com_beneficio=com_beneficio,
        itens_com_fcp_manual=com_fcp_manual,
        itens_com_erro=com_erro,
        economia_total=_round(totals["economia"]),
    )


def filtrar_resultados(
    resultados: Iterable[CalculationResult],
    destinacao: Optional[Union[Destinacao, str]] = None,
    cfop: Optional[str] = None,
    apenas_com_difal: bool = False,
    valor_minimo_base: Optional[float] = None,
) -> List[CalculationResult]:
    filtrados = list(resultados)
    if destinacao:
        alvo = Destinacao(destinacao)
        filtrados = [r for r in filtrados if r.item.destinacao is alvo]
    if cfop:
        filtrados = [r for r in filtrados if r.item.cfop == cfop.strip()]
    if apenas_com_difal:
        filtrados = [r for r in filtrados if not r.erro and r.total_recolher > 0]
    if valor_minimo_base:
        filtrados = [r for r in filtrados if not r.erro and r.base >= valor_minimo_base]
    return filtrados


def distribuicao_destinacao(itens: Iterable[DifalItem]) -> Dict[str, int]:
    distribuicao = {destinacao.value: 0 for destinacao in Destinacao}
    total = 0
    for item in itens:
        distribuicao[item.destinacao.value] += 1
        total += 1
    distribuicao["total"] = total
    return distribuicao
