"""SPED EFD ICMS/IPI parser: company header, DIFAL candidate items and statistics.

The file is read in a single forward pass. ``C170`` item lines are attached to
the most recent ``C100`` document; participants (``0150``) and products
(``0200``) are indexed along the way and joined to the candidates once the pass
is over. Unknown or malformed lines are skipped with a warning; only a missing
``0000`` header, an empty file or undecodable content abort the parse.
"""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple, Union

import chardet

from difal.core.logger import log_event
from difal.core.settings import settings
from difal.models import (
    BeneficioDocumento,
    CompanyHeader,
    Destinacao,
    DifalItem,
    ParseResult,
    ParseStats,
    resolver_descricao,
)
from difal.rules.rate_tables import (
    CST_ALIQUOTA_REFERENCIA,
    CST_TABLE,
    destinacao_cfop,
    uf_por_codigo_municipio,
)


class ParseError(ValueError):
    """Erro fatal de leitura do arquivo SPED."""


class EmptyFileError(ParseError):
    pass


class MissingHeaderError(ParseError):
    pass


class EncodingError(ParseError):
    pass


REG_RE = re.compile(r"^[0-9A-Z]\d{3}$")

# Quantidade mínima de campos (REG incluso) para os registros que o parser consome.
MIN_FIELDS = {
    "0000": 9,
    "0150": 8,
    "0200": 8,
    "C100": 12,
    "C170": 11,
    "C190": 5,
    "9900": 3,
    "9999": 2,
}

MAX_AVISOS = 200
SAMPLE_SIZE = 64 * 1024
CENTAVOS = Decimal("0.01")


# -------------------------
# Decodificação
# -------------------------
def _normalise_codec(name: str) -> Optional[str]:
    try:
        return codecs.lookup(name).name
    except LookupError:
        return None


def decode_content(raw: bytes) -> Tuple[str, str]:
    """Decodifica o conteúdo: UTF-8 estrito, depois chardet, cp1252 e latin-1."""

    if not raw or not raw.strip():
        raise EmptyFileError("Arquivo SPED vazio")

    candidates: List[str] = []
    try:
        text = raw.decode("utf-8-sig")
        encoding = "utf-8"
    except UnicodeDecodeError as exc:
        log_event("sped_parser", "WARN", "Arquivo não é UTF-8, tentando fallback", {"error": str(exc)})
        guess = chardet.detect(raw[:SAMPLE_SIZE])
        if guess.get("encoding") and (guess.get("confidence") or 0) >= settings.ENCODING_MIN_CONFIDENCE:
            candidates.append(guess["encoding"])
        candidates.extend(["cp1252", "latin-1"])
        text, encoding = "", ""
        tried = set()
        for candidate in candidates:
            codec = _normalise_codec(candidate)
            if codec is None or codec in tried or codec == "utf-8":
                continue
            tried.add(codec)
            try:
                text = raw.decode(codec)
                encoding = codec
                break
            except UnicodeDecodeError:
                log_event("sped_parser", "DEBUG", "Falha ao decodificar", {"encoding": codec})
        if not encoding:  # pragma: no cover - latin-1 always decodes
            raise EncodingError("Não foi possível decodificar o arquivo com os encodings suportados.")

    _check_text(text)
    return text, encoding


def _check_text(text: str) -> None:
    if "\x00" in text:
        raise EncodingError("Conteúdo binário detectado: o arquivo não é um texto SPED.")
    if not text.strip():
        raise EmptyFileError("Arquivo SPED vazio")


# -------------------------
# Utilitários de campo
# -------------------------
def _campo(campos: List[str], idx: int) -> str:
    return campos[idx].strip() if idx < len(campos) else ""


def _decimal(value: str) -> Decimal:
    s = (value or "").strip()
    if not s:
        return Decimal("0")
    try:
        return Decimal(s.replace(".", "").replace(",", ".") if "," in s else s)
    except InvalidOperation:
        raise ValueError(f"Valor numérico inválido: {value!r}") from None


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENTAVOS, rounding=ROUND_HALF_UP)


def _formatar_data(value: str) -> Optional[str]:
    if len(value) == 8 and value.isdigit():
        return f"{value[:2]}/{value[2:4]}/{value[4:]}"
    return None


def identificar_beneficio_documento(
    cst_icms: str, aliq_icms: Decimal, vl_bc_icms: Decimal, vl_item: Decimal
) -> BeneficioDocumento:
    """Benefício indicado pelo CST ICMS do próprio documento."""

    cst = (cst_icms or "").strip()
    cst = cst[-2:] if len(cst) >= 2 else cst.zfill(2)
    entry = CST_TABLE.get(cst)
    if entry is None:
        return BeneficioDocumento(descricao=f"CST {cst} não mapeado", aliquota_efetiva=float(aliq_icms))

    tipo = entry.get("tipo", "")
    percentual = Decimal("0")
    if tipo == "REDUCAO_BASE" and vl_item > 0 and vl_bc_icms >= 0:
        percentual = _round((vl_item - vl_bc_icms) / vl_item * 100)
    if cst == "90" and aliq_icms < CST_ALIQUOTA_REFERENCIA:
        tipo = "REDUCAO_ALIQUOTA"

    return BeneficioDocumento(
        tem_beneficio=bool(tipo),
        tipo_beneficio=tipo,
        descricao=entry.get("descricao", ""),
        percentual_reducao=float(percentual),
        aliquota_efetiva=float(aliq_icms),
    )


# -------------------------
# Estado da leitura
# -------------------------
@dataclass(slots=True)
class _Nota:
    cod_part: str
    serie: str
    num_doc: str
    chv_nfe: str
    vl_merc: Decimal
    vl_frt: Decimal
    vl_seg: Decimal
    vl_out_da: Decimal

    @property
    def chave(self) -> str:
        return f"{self.serie}-{self.num_doc}"


@dataclass(slots=True)
class _Candidato:
    nota: _Nota
    destinacao: Destinacao
    num_item: str
    cod_item: str
    descr_compl: str
    qtd: Decimal
    unid: str
    vl_item: Decimal
    vl_desc: Decimal
    cst_icms: str
    cfop: str
    vl_bc_icms: Decimal
    aliq_icms: Decimal
    vl_icms: Decimal
    vl_ipi: Decimal


@dataclass
class _ParserState:
    header: Optional[CompanyHeader] = None
    total: int = 0
    por_tipo: Dict[str, int] = field(default_factory=dict)
    avisos: List[str] = field(default_factory=list)
    avisos_omitidos: int = 0
    tipos_desconhecidos: set = field(default_factory=set)
    participantes: Dict[str, Optional[str]] = field(default_factory=dict)
    catalogo: Dict[str, Dict[str, str]] = field(default_factory=dict)
    nota_atual: Optional[_Nota] = None
    notas: int = 0
    candidatos: List[_Candidato] = field(default_factory=list)
    qtd_lin_trailer: Optional[int] = None

    def avisar(self, message: str, meta: Optional[dict] = None) -> None:
        if len(self.avisos) >= MAX_AVISOS:
            self.avisos_omitidos += 1
            return
        self.avisos.append(message)
        log_event("sped_parser", "WARN", message, meta)


# -------------------------
# Registros
# -------------------------
def _reg_0000(state: _ParserState, campos: List[str], numero: int) -> None:
    if state.header is not None:
        state.avisar(f"Linha {numero}: registro 0000 duplicado ignorado")
        return
    nome = _campo(campos, 5)
    documento = re.sub(r"\D", "", _campo(campos, 6) or _campo(campos, 7))
    if not nome or not documento:
        state.avisar(f"Linha {numero}: registro 0000 sem nome ou CNPJ", {"linha": numero})
        return
    dt_ini = _campo(campos, 3)
    state.header = CompanyHeader(
        razao_social=nome,
        cnpj=documento,
        uf=_campo(campos, 8).upper(),
        ie=_campo(campos, 9) or None,
        dt_ini=_formatar_data(dt_ini),
        dt_fin=_formatar_data(_campo(campos, 4)),
        periodo_apuracao=f"{dt_ini[2:4]}/{dt_ini[4:]}" if _formatar_data(dt_ini) else "",
    )


def _reg_0150(state: _ParserState, campos: List[str], numero: int) -> None:
    cod_part = _campo(campos, 1)
    if cod_part:
        state.participantes[cod_part] = uf_por_codigo_municipio(_campo(campos, 7))


def _reg_0200(state: _ParserState, campos: List[str], numero: int) -> None:
    cod_item = _campo(campos, 1)
    if cod_item:
        state.catalogo[cod_item] = {
            "descricao": _campo(campos, 2) or "SEM DADOS NA ORIGEM",
            "tipo": _campo(campos, 6) or "SEM DADOS NA ORIGEM",
            "ncm": _campo(campos, 7) or "SEM DADOS NA ORIGEM",
        }


def _reg_c100(state: _ParserState, campos: List[str], numero: int) -> None:
    state.notas += 1
    try:
        state.nota_atual = _Nota(
            cod_part=_campo(campos, 3),
            serie=_campo(campos, 6),
            num_doc=_campo(campos, 7),
            chv_nfe=_campo(campos, 8),
            vl_merc=_decimal(_campo(campos, 15)),
            vl_frt=_decimal(_campo(campos, 17)),
            vl_seg=_decimal(_campo(campos, 18)),
            vl_out_da=_decimal(_campo(campos, 19)),
        )
    except ValueError as exc:
        state.nota_atual = None
        state.avisar(f"Linha {numero}: C100 com valor inválido ({exc}); itens do documento ignorados")


def _reg_c170(state: _ParserState, campos: List[str], numero: int) -> None:
    nota = state.nota_atual
    if nota is None:
        state.avisar(f"Linha {numero}: C170 sem documento C100 correspondente", {"linha": numero})
        return
    cfop = _campo(campos, 10)
    destinacao = destinacao_cfop(cfop)
    if destinacao is None:
        return
    try:
        candidato = _Candidato(
            nota=nota,
            destinacao=destinacao,
            num_item=_campo(campos, 1),
            cod_item=_campo(campos, 2),
            descr_compl=_campo(campos, 3),
            qtd=_decimal(_campo(campos, 4)),
            unid=_campo(campos, 5),
            vl_item=_decimal(_campo(campos, 6)),
            vl_desc=_decimal(_campo(campos, 7)),
            cst_icms=_campo(campos, 9),
            cfop=cfop,
            vl_bc_icms=_decimal(_campo(campos, 12)),
            aliq_icms=_decimal(_campo(campos, 13)),
            vl_icms=_decimal(_campo(campos, 14)),
            vl_ipi=_decimal(_campo(campos, 23)),
        )
    except ValueError as exc:
        state.avisar(f"Linha {numero}: C170 com valor inválido ({exc})", {"linha": numero})
        return
    if candidato.vl_item < 0:
        state.avisar(f"Linha {numero}: C170 com VL_ITEM negativo, ignorado", {"linha": numero})
        return
    state.candidatos.append(candidato)


def _reg_9999(state: _ParserState, campos: List[str], numero: int) -> None:
    try:
        state.qtd_lin_trailer = int(_campo(campos, 1))
    except ValueError:
        state.avisar(f"Linha {numero}: QTD_LIN do registro 9999 inválido")


_HANDLERS = {
    "0000": _reg_0000,
    "0150": _reg_0150,
    "0200": _reg_0200,
    "C100": _reg_c100,
    "C170": _reg_c170,
    "9999": _reg_9999,
}

# Blocos do leiaute EFD ICMS/IPI; registros fora deles são desconhecidos
BLOCOS_EFD = frozenset("0BCDEGHK19")


def _processar_linha(state: _ParserState, linha: str, numero: int) -> None:
    linha = linha.strip().lstrip("\ufeff")
    if not linha:
        return
    if not (linha.startswith("|") and linha.endswith("|")) or len(linha) < 3:
        state.avisar(f"Linha {numero}: formato inválido, linha ignorada", {"linha": numero})
        return
    campos = linha[1:-1].split("|")
    reg = campos[0].strip().upper()
    if not REG_RE.match(reg):
        state.avisar(f"Linha {numero}: código de registro inválido '{reg}'", {"linha": numero})
        return

    state.total += 1
    state.por_tipo[reg] = state.por_tipo.get(reg, 0) + 1

    # Documento corrente só vale dentro do bloco C
    if not reg.startswith("C") or reg == "C990":
        state.nota_atual = None

    minimo = MIN_FIELDS.get(reg)
    if minimo is not None and len(campos) < minimo:
        state.avisar(
            f"Linha {numero}: registro {reg} com {len(campos)} campos (mínimo {minimo}), ignorado",
            {"linha": numero, "registro": reg},
        )
        if reg == "C100":
            state.nota_atual = None
        return

    handler = _HANDLERS.get(reg)
    if handler is not None:
        handler(state, campos, numero)
        return
    if reg[0] not in BLOCOS_EFD and reg not in state.tipos_desconhecidos:
        state.tipos_desconhecidos.add(reg)
        state.avisar(f"Linha {numero}: tipo de registro desconhecido '{reg}' ignorado", {"registro": reg})


def _montar_item(state: _ParserState, cand: _Candidato) -> DifalItem:
    nota = cand.nota
    produto = state.catalogo.get(cand.cod_item)
    frete = seguro = outras = Decimal("0")
    if nota.vl_merc > 0:
        share = cand.vl_item / nota.vl_merc
        frete = _round(nota.vl_frt * share)
        seguro = _round(nota.vl_seg * share)
        outras = _round(nota.vl_out_da * share)
    base = _round(cand.vl_item + cand.vl_ipi + frete + seguro + outras - cand.vl_desc)

    descricao_cadastral = produto["descricao"] if produto else "PRODUTO NÃO CADASTRADO"
    return DifalItem(
        num_item=cand.num_item,
        cod_item=cand.cod_item,
        ncm=produto["ncm"] if produto else "NCM NÃO ENCONTRADO",
        descricao_cadastral=descricao_cadastral,
        descr_compl=cand.descr_compl,
        descricao=resolver_descricao(descricao_cadastral, cand.descr_compl),
        cfop=cand.cfop,
        cst_icms=cand.cst_icms,
        destinacao=cand.destinacao,
        qtd=float(cand.qtd),
        unid=cand.unid,
        vl_item=float(cand.vl_item),
        vl_desc=float(cand.vl_desc),
        vl_ipi=float(cand.vl_ipi),
        vl_bc_icms=float(cand.vl_bc_icms),
        aliq_icms=float(cand.aliq_icms),
        vl_icms=float(cand.vl_icms),
        frete_rateado=float(frete),
        seguro_rateado=float(seguro),
        outras_rateado=float(outras),
        base_calculo_difal=float(base),
        chave_nota=nota.chave,
        chv_nfe=nota.chv_nfe,
        cod_part=nota.cod_part,
        uf_origem=state.participantes.get(nota.cod_part),
        uf_destino=state.header.uf if state.header and state.header.uf else None,
        status_vinculacao="ENCONTRADO" if produto else "NÃO ENCONTRADO",
        beneficios_fiscais=identificar_beneficio_documento(
            cand.cst_icms, cand.aliq_icms, cand.vl_bc_icms, cand.vl_item
        ),
    )


def parse_lines(lines: Iterable[str], encoding: str = "utf-8") -> ParseResult:
    """Lê linhas já decodificadas; mesma saída de ``parse`` para o mesmo conteúdo."""

    state = _ParserState()
    for numero, linha in enumerate(lines, start=1):
        if numero > settings.SPED_MAX_LINES:
            raise ParseError(f"Arquivo excede o limite de {settings.SPED_MAX_LINES} linhas")
        _processar_linha(state, linha, numero)

    if state.total == 0:
        raise MissingHeaderError("Nenhum registro SPED válido encontrado (registro 0000 ausente)")
    if state.header is None:
        raise MissingHeaderError("Registro 0000 ausente ou ilegível")

    if state.qtd_lin_trailer is None:
        state.avisar("Registro 9999 ausente: integridade do arquivo não verificada")
    elif state.qtd_lin_trailer != state.total:
        state.avisar(
            f"Registro 9999 informa {state.qtd_lin_trailer} linhas, lidas {state.total}",
            {"informado": state.qtd_lin_trailer, "lido": state.total},
        )

    items = tuple(_montar_item(state, cand) for cand in state.candidatos)
    avisos = list(state.avisos)
    if state.avisos_omitidos:
        avisos.append(f"{state.avisos_omitidos} avisos adicionais omitidos")

    log_event(
        "sped_parser",
        "INFO",
        "Arquivo SPED processado",
        {
            "registros": state.total,
            "tipos": len(state.por_tipo),
            "itens_difal": len(items),
            "avisos": len(avisos),
        },
    )
    return ParseResult(
        header=state.header,
        items=items,
        stats=ParseStats(
            total_registros=state.total,
            tipos_registros=len(state.por_tipo),
            registros_por_tipo=dict(state.por_tipo),
        ),
        avisos=tuple(avisos),
        encoding=encoding,
        produtos_catalogo=len(state.catalogo),
        notas_fiscais=state.notas,
    )


def parse(raw: Union[bytes, str]) -> ParseResult:
    if isinstance(raw, str):
        text, encoding = raw.lstrip("\ufeff"), "utf-8"
        _check_text(text)
    else:
        text, encoding = decode_content(raw)
    return parse_lines(text.splitlines(), encoding=encoding)
