"""DIFAL calculation engine with per item calculation trail."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from difal.core.logger import log_event
from difal.models import (
    Beneficio,
    BenefitConfig,
    CalculationConfig,
    CalculationResult,
    DifalItem,
    Isencao,
    Metodologia,
    ReducaoAliquotaDestino,
    ReducaoAliquotaOrigem,
    ReducaoBase,
)
from difal.rules.benefit_resolver import SEM_BENEFICIO, ResolvedBenefit, resolver_beneficio
from difal.rules.rate_tables import EstadoInfo, RateLookupError, aliquota_interestadual, obter_estado
from difal.utils.aggregator import obter_totalizadores

ZERO = Decimal("0")
CEM = Decimal("100")

METODOLOGIA_LABELS = {
    Metodologia.BASE_UNICA: "Base Única",
    Metodologia.BASE_DUPLA: "Base Dupla",
}


class CalculationError(ValueError):
    """Item sem condições de cálculo (ex.: operação interna)."""


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or "0"))


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _round(value: Decimal) -> float:
    return float(_quantize(value))


def _brl(value: Decimal) -> str:
    text = f"{_quantize(value):,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def _pct(value: Decimal) -> str:
    return f"{value.normalize():f}".replace(".", ",") + "%"


class MemoriaCalculo:
    """Append-only builder for the calculation trail; ``build`` freezes it."""

    __slots__ = ("_linhas",)

    def __init__(self) -> None:
        self._linhas: List[str] = []

    def add(self, linha: str) -> "MemoriaCalculo":
        self._linhas.append(linha)
        return self

    def secao(self, titulo: str) -> "MemoriaCalculo":
        return self.add(f"--- {titulo} ---")

    def build(self) -> Tuple[str, ...]:
        return tuple(self._linhas)


@dataclass(slots=True)
class _Apuracao:
    base_original: Decimal
    base: Decimal
    aliq_origem: Decimal
    aliq_destino: Decimal
    aliq_fcp: Decimal
    icms_origem: Decimal = ZERO
    icms_destino: Decimal = ZERO
    difal: Decimal = ZERO
    fcp: Decimal = ZERO
    beneficio_aplicado: bool = False
    isento: bool = False

    @property
    def total(self) -> Decimal:
        return _quantize(self.difal) + _quantize(self.fcp)


def resolver_metodologia(
    solicitada: Metodologia, destino: EstadoInfo
) -> Tuple[Metodologia, bool, str]:
    """Metodologia efetiva, se foi forçada e a linha de memória correspondente."""

    if solicitada is Metodologia.AUTO:
        efetiva = destino.metodologia
        label = METODOLOGIA_LABELS[efetiva]
        return efetiva, False, f"Metodologia: {label} (regra automática: {destino.uf} adota {label})"
    return solicitada, True, f"Metodologia forçada pelo usuário: {METODOLOGIA_LABELS[solicitada]}"


def _aplicar_beneficio(
    ap: _Apuracao, beneficio: Beneficio, label: str, memoria: MemoriaCalculo
) -> None:
    memoria.secao("BENEFÍCIOS FISCAIS")
    if isinstance(beneficio, Isencao):
        ap.base = ZERO
        ap.isento = True
        ap.beneficio_aplicado = True
        memoria.add("Isenção: item isento de DIFAL e FCP")
    elif isinstance(beneficio, ReducaoAliquotaOrigem):
        nova = _as_decimal(beneficio.aliq_origem_efetiva)
        memoria.add(f"{label}: alíquota origem {_pct(ap.aliq_origem)} -> {_pct(nova)}")
        ap.aliq_origem = nova
        ap.beneficio_aplicado = True
    elif isinstance(beneficio, ReducaoAliquotaDestino):
        nova = _as_decimal(beneficio.aliq_destino_efetiva)
        memoria.add(f"{label}: alíquota destino {_pct(ap.aliq_destino)} -> {_pct(nova)}")
        ap.aliq_destino = nova
        ap.beneficio_aplicado = True
    elif isinstance(beneficio, ReducaoBase):
        carga = _as_decimal(beneficio.carga_efetiva_desejada)
        if ap.aliq_destino <= 0:
            memoria.add(f"{label} sem efeito: alíquota destino igual a zero")
            return
        reduzida = min(ap.base * carga / ap.aliq_destino, ap.base)
        memoria.add(
            f"{label}: carga efetiva {_pct(carga)} / alíquota destino {_pct(ap.aliq_destino)}"
            f" -> base {_brl(ap.base)} reduzida para {_brl(reduzida)}"
        )
        ap.base = reduzida
        ap.beneficio_aplicado = True
    else:
        raise TypeError(f"Tipo de benefício desconhecido: {type(beneficio).__name__}")


def _apurar(
    item: DifalItem,
    origem: EstadoInfo,
    destino: EstadoInfo,
    metodologia: Metodologia,
    percentual: Decimal,
    resolved: ResolvedBenefit,
    memoria: MemoriaCalculo,
) -> _Apuracao:
    valor = _as_decimal(item.valor_operacao)
    base_dupla = metodologia is Metodologia.BASE_DUPLA

    memoria.secao("BASE DE CÁLCULO")
    memoria.add(f"Valor da operação: {_brl(valor)}")
    if valor < 0:
        memoria.add("Valor da operação negativo (desconto maior que o item): base ajustada para zero")
        valor = ZERO
    base = valor * percentual / CEM if base_dupla else valor
    if base_dupla:
        memoria.add(f"Percentual destinatário: {_pct(percentual)}")
    memoria.add(f"Base de cálculo: {_brl(base)}")

    fcp_manual = resolved.fcp_manual
    ap = _Apuracao(
        base_original=base,
        base=base,
        aliq_origem=aliquota_interestadual(origem.uf, destino.uf),
        aliq_destino=destino.aliq_interna,
        aliq_fcp=fcp_manual if fcp_manual is not None else destino.fcp,
    )
    if resolved.beneficio is not None:
        _aplicar_beneficio(ap, resolved.beneficio, resolved.label, memoria)
        if ap.isento:
            return ap

    memoria.secao(f"CÁLCULO {METODOLOGIA_LABELS[metodologia].upper()}")
    ap.icms_origem = ap.base * ap.aliq_origem / CEM
    ap.icms_destino = ap.base * ap.aliq_destino / CEM
    ap.difal = max(ZERO, ap.icms_destino - ap.icms_origem)
    memoria.add(f"Alíquota interestadual ({origem.uf}): {_pct(ap.aliq_origem)}")
    memoria.add(f"Alíquota interna ({destino.uf}): {_pct(ap.aliq_destino)}")
    memoria.add(f"ICMS origem: {_brl(ap.base)} x {_pct(ap.aliq_origem)} = {_brl(ap.icms_origem)}")
    memoria.add(f"ICMS destino: {_brl(ap.base)} x {_pct(ap.aliq_destino)} = {_brl(ap.icms_destino)}")
    memoria.add(f"DIFAL: {_brl(ap.icms_destino)} - {_brl(ap.icms_origem)} = {_brl(ap.difal)}")
    if ap.aliq_destino <= ap.aliq_origem:
        memoria.add("Alíquota destino não supera a interestadual: DIFAL zerado")

    memoria.secao("FCP")
    ap.fcp = ap.base * ap.aliq_fcp / CEM
    fonte = "manual" if fcp_manual is not None else f"tabela {destino.uf}"
    memoria.add(f"Alíquota FCP: {_pct(ap.aliq_fcp)} ({fonte})")
    memoria.add(f"FCP: {_brl(ap.base)} x {_pct(ap.aliq_fcp)} = {_brl(ap.fcp)}")
    return ap


def _resultado_erro(
    item: DifalItem,
    config: CalculationConfig,
    uf_origem: Optional[str],
    uf_destino: Optional[str],
    resolved: ResolvedBenefit,
    memoria: MemoriaCalculo,
    mensagem: str,
) -> CalculationResult:
    memoria.add(f"ERRO: {mensagem}")
    log_event("difal_calculator", "WARN", "Item não calculado", {"item": item.cod_item, "erro": mensagem})
    return CalculationResult(
        item=item,
        uf_origem=uf_origem,
        uf_destino=uf_destino,
        percentual_destinatario=config.percentual_destinatario,
        origem_configuracao=resolved.origem,
        pendencias=resolved.pendencias,
        status="ERRO",
        erro=True,
        mensagem_erro=mensagem,
        memoria_calculo=memoria.build(),
    )


def calcular_item(
    item: DifalItem,
    config: CalculationConfig,
    configuracoes_itens: Optional[Mapping[str, BenefitConfig]] = None,
) -> CalculationResult:
    resolved = resolver_beneficio(item.cod_item, config.beneficios_globais, configuracoes_itens)
    uf_origem = (item.uf_origem or config.uf_origem or "").strip().upper() or None
    uf_destino = (config.uf_destino or item.uf_destino or "").strip().upper() or None

    memoria = MemoriaCalculo()
    memoria.add("=== MEMÓRIA DE CÁLCULO DIFAL ===")
    memoria.add(f"Item: {item.cod_item} - {item.descricao_principal}")
    memoria.add(f"CFOP: {item.cfop} | Destinação: {item.destinacao.value}")
    memoria.add(f"Operação: {uf_origem or '?'} -> {uf_destino or '?'}")

    try:
        origem = obter_estado(uf_origem)
        destino = obter_estado(uf_destino)
        if origem.uf == destino.uf:
            raise CalculationError(f"Operação não é interestadual ({origem.uf} -> {destino.uf})")
    except (RateLookupError, CalculationError) as exc:
        return _resultado_erro(item, config, uf_origem, uf_destino, resolved, memoria, str(exc))

    metodologia, forcada, linha_metodologia = resolver_metodologia(config.metodologia, destino)
    memoria.add(linha_metodologia)
    memoria.add(f"Configuração de benefício: {resolved.origem}")
    for pendencia in resolved.pendencias:
        memoria.add(f"Pendência: {pendencia}")
    documento = item.beneficios_fiscais
    if documento is not None and documento.tem_beneficio:
        memoria.add(f"Benefício no documento (CST {item.cst_icms}): {documento.descricao} [informativo]")

    percentual = _as_decimal(config.percentual_destinatario)
    ap = _apurar(item, origem, destino, metodologia, percentual, resolved, memoria)
    if resolved.beneficio is not None:
        sem_beneficio = ResolvedBenefit(origem=resolved.origem, fcp_manual=resolved.fcp_manual)
        baseline = _apurar(item, origem, destino, metodologia, percentual, sem_beneficio, MemoriaCalculo())
    else:
        baseline = ap

    total = ap.total
    memoria.secao("RESULTADO FINAL")
    memoria.add(f"DIFAL: {_brl(ap.difal)}")
    memoria.add(f"FCP: {_brl(ap.fcp)}")
    memoria.add(f"Total a recolher: {_brl(total)}")
    if ap.beneficio_aplicado:
        memoria.add(f"SEM BENEFÍCIOS: {_brl(baseline.total)}")
        memoria.add(f"COM BENEFÍCIOS: {_brl(total)}")
        memoria.add(f"ECONOMIA: {_brl(baseline.total - total)}")

    if ap.isento:
        status = "ISENTO"
    elif total > 0:
        status = "COM DIFAL"
    else:
        status = "SEM DIFAL"

    return CalculationResult(
        item=item,
        uf_origem=origem.uf,
        uf_destino=destino.uf,
        base=_round(ap.base),
        base_original=_round(ap.base_original),
        aliq_origem=float(ap.aliq_origem),
        aliq_destino=float(ap.aliq_destino),
        aliq_fcp=float(ap.aliq_fcp),
        percentual_destinatario=config.percentual_destinatario,
        icms_origem=_round(ap.icms_origem),
        icms_destino=_round(ap.icms_destino),
        difal=_round(ap.difal),
        fcp=_round(ap.fcp),
        total_recolher=_round(total),
        total_sem_beneficio=_round(baseline.total),
        metodologia=metodologia,
        metodologia_forcada=forcada,
        beneficio=resolved.label if ap.beneficio_aplicado else "Nenhum",
        origem_configuracao=resolved.origem,
        fcp_manual_aplicado=resolved.fcp_manual is not None,
        pendencias=resolved.pendencias,
        status=status,
        memoria_calculo=memoria.build(),
    )


def calcular_todos(
    items: Iterable[DifalItem],
    config: CalculationConfig,
    configuracoes_itens: Optional[Mapping[str, BenefitConfig]] = None,
) -> List[CalculationResult]:
    resultados: List[CalculationResult] = []
    for item in items:
        try:
            resultados.append(calcular_item(item, config, configuracoes_itens))
        except Exception as exc:  # pragma: no cover - defensive
            resultados.append(
                _resultado_erro(item, config, item.uf_origem, config.uf_destino, SEM_BENEFICIO, MemoriaCalculo(), str(exc))
            )

    erros = sum(1 for resultado in resultados if resultado.erro)
    log_event(
        "difal_calculator",
        "INFO",
        "Cálculo DIFAL concluído",
        {"itens": len(resultados), "erros": erros, "metodologia": config.metodologia.value},
    )
    return resultados


__all__ = [
    "CalculationError",
    "MemoriaCalculo",
    "calcular_item",
    "calcular_todos",
    "obter_totalizadores",
    "resolver_metodologia",
]
