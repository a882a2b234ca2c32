"""Pydantic models describing the public contracts of the DIFAL engine."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from difal.core.settings import settings


SENTINELAS_DESCRICAO = ("PRODUTO NÃO CADASTRADO", "SEM DADOS NA ORIGEM")


class Destinacao(str, Enum):
    USO_CONSUMO = "uso-consumo"
    ATIVO_IMOBILIZADO = "ativo-imobilizado"


class Metodologia(str, Enum):
    AUTO = "auto"
    BASE_UNICA = "base-unica"
    BASE_DUPLA = "base-dupla"


def resolver_descricao(cadastral: Optional[str], complementar: Optional[str]) -> str:
    """Descrição principal do item: cadastro 0200 primeiro, C170 como fallback."""

    cadastral = (cadastral or "").strip()
    complementar = (complementar or "").strip()
    if cadastral and cadastral not in SENTINELAS_DESCRICAO:
        return cadastral
    return complementar or cadastral or "SEM DESCRIÇÃO"


class CompanyHeader(BaseModel):
    """Identificação do contribuinte (registro 0000)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    razao_social: str = Field(alias="razaoSocial")
    cnpj: str
    uf: str = ""
    ie: Optional[str] = None
    dt_ini: Optional[str] = Field(default=None, alias="dtIni")
    dt_fin: Optional[str] = Field(default=None, alias="dtFin")
    periodo_apuracao: str = Field(default="", alias="periodoApuracao")


class BeneficioDocumento(BaseModel):
    """Benefício informado no próprio documento fiscal via CST ICMS."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tem_beneficio: bool = Field(default=False, alias="temBeneficio")
    tipo_beneficio: str = Field(default="", alias="tipoBeneficio")
    descricao: str = ""
    percentual_reducao: float = Field(default=0.0, alias="percentualReducao")
    aliquota_efetiva: float = Field(default=0.0, alias="aliquotaEfetiva")


class DifalItem(BaseModel):
    """Item C170 elegível ao DIFAL."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    num_item: str = Field(default="", alias="numItem")
    cod_item: str = Field(alias="codItem")
    ncm: str = ""
    descricao_cadastral: str = Field(default="", alias="descricaoCadastral")
    descr_compl: str = Field(default="", alias="descrCompl")
    descricao: str = ""
    cfop: str
    cst_icms: str = Field(default="", alias="cstIcms")
    destinacao: Destinacao
    qtd: float = 0.0
    unid: str = ""
    vl_item: float = Field(ge=0, alias="vlItem")
    vl_desc: float = Field(default=0.0, alias="vlDesc")
    vl_ipi: float = Field(default=0.0, alias="vlIpi")
    vl_bc_icms: float = Field(default=0.0, alias="vlBcIcms")
    aliq_icms: float = Field(default=0.0, alias="aliqIcms")
    vl_icms: float = Field(default=0.0, alias="vlIcms")
    frete_rateado: float = Field(default=0.0, alias="freteRateado")
    seguro_rateado: float = Field(default=0.0, alias="seguroRateado")
    outras_rateado: float = Field(default=0.0, alias="outrasRateado")
    base_calculo_difal: Optional[float] = Field(default=None, alias="baseCalculoDifal")
    chave_nota: str = Field(default="", alias="chaveNota")
    chv_nfe: str = Field(default="", alias="chvNfe")
    cod_part: str = Field(default="", alias="codPart")
    uf_origem: Optional[str] = Field(default=None, alias="ufOrigem")
    uf_destino: Optional[str] = Field(default=None, alias="ufDestino")
    status_vinculacao: str = Field(default="NÃO PROCESSADO", alias="statusVinculacao")
    beneficios_fiscais: Optional[BeneficioDocumento] = Field(default=None, alias="beneficiosFiscais")

    @property
    def descricao_principal(self) -> str:
        return self.descricao or resolver_descricao(self.descricao_cadastral, self.descr_compl)

    @property
    def valor_operacao(self) -> float:
        if self.base_calculo_difal is not None:
            return self.base_calculo_difal
        return self.vl_item


# -------------------------
# Benefícios configurados pelo usuário
# -------------------------
class ReducaoBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tipo: Literal["reducao-base"] = "reducao-base"
    carga_efetiva_desejada: Optional[float] = Field(default=None, alias="cargaEfetivaDesejada")


class ReducaoAliquotaOrigem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tipo: Literal["reducao-aliquota-origem"] = "reducao-aliquota-origem"
    aliq_origem_efetiva: Optional[float] = Field(default=None, alias="aliqOrigemEfetiva")


class ReducaoAliquotaDestino(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tipo: Literal["reducao-aliquota-destino"] = "reducao-aliquota-destino"
    aliq_destino_efetiva: Optional[float] = Field(default=None, alias="aliqDestinoEfetiva")


class Isencao(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tipo: Literal["isencao"] = "isencao"


Beneficio = Annotated[
    Union[ReducaoBase, ReducaoAliquotaOrigem, ReducaoAliquotaDestino, Isencao],
    Field(discriminator="tipo"),
]

_CAMPOS_BENEFICIO = (
    "cargaEfetivaDesejada",
    "aliqOrigemEfetiva",
    "aliqDestinoEfetiva",
    "carga_efetiva_desejada",
    "aliq_origem_efetiva",
    "aliq_destino_efetiva",
)


class BenefitConfig(BaseModel):
    """Configuração de benefício de um item (ou global)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    beneficio: Optional[Beneficio] = None
    fcp_manual: Optional[float] = Field(default=None, alias="fcpManual")

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_shape(cls, data: Any) -> Any:
        # {"beneficio": "reducao-base", "cargaEfetivaDesejada": 12} -> união discriminada
        if not isinstance(data, dict):
            return data
        tipo = data.get("beneficio")
        if isinstance(tipo, str):
            data = dict(data)
            if not tipo.strip():
                data["beneficio"] = None
                return data
            nested: Dict[str, Any] = {"tipo": tipo}
            for campo in _CAMPOS_BENEFICIO:
                if campo in data:
                    nested[campo] = data.pop(campo)
            data["beneficio"] = nested
        return data

    @property
    def tem_configuracao(self) -> bool:
        return self.beneficio is not None or self.fcp_manual is not None


class CalculationConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    uf_origem: Optional[str] = Field(default=None, alias="ufOrigem")
    uf_destino: Optional[str] = Field(default=None, alias="ufDestino")
    metodologia: Metodologia = Metodologia.AUTO
    percentual_destinatario: float = Field(
        default_factory=lambda: settings.DEFAULT_PERCENTUAL_DESTINATARIO, ge=0, le=100, alias="percentualDestinatario"
    )
    beneficios_globais: Optional[BenefitConfig] = Field(default=None, alias="beneficiosGlobais")

    @field_validator("uf_origem", "uf_destino")
    @classmethod
    def _normalise_uf(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().upper() or None


# -------------------------
# Resultados
# -------------------------
class CalculationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    item: DifalItem
    uf_origem: Optional[str] = Field(default=None, alias="ufOrigem")
    uf_destino: Optional[str] = Field(default=None, alias="ufDestino")
    base: float = 0.0
    base_original: float = Field(default=0.0, alias="baseOriginal")
    aliq_origem: float = Field(default=0.0, alias="aliqOrigem")
    aliq_destino: float = Field(default=0.0, alias="aliqDestino")
    aliq_fcp: float = Field(default=0.0, alias="aliqFcp")
    percentual_destinatario: float = Field(default=100.0, alias="percentualDestinatario")
    icms_origem: float = Field(default=0.0, alias="icmsOrigem")
    icms_destino: float = Field(default=0.0, alias="icmsDestino")
    difal: float = 0.0
    fcp: float = 0.0
    total_recolher: float = Field(default=0.0, alias="totalRecolher")
    total_sem_beneficio: float = Field(default=0.0, alias="totalSemBeneficio")
    metodologia: Optional[Metodologia] = None
    metodologia_forcada: bool = Field(default=False, alias="metodologiaForcada")
    beneficio: str = "Nenhum"
    origem_configuracao: str = Field(default="nenhuma", alias="origemConfiguracao")
    fcp_manual_aplicado: bool = Field(default=False, alias="fcpManualAplicado")
    pendencias: Tuple[str, ...] = ()
    status: str = "SEM DIFAL"
    erro: bool = False
    mensagem_erro: Optional[str] = Field(default=None, alias="mensagemErro")
    memoria_calculo: Tuple[str, ...] = Field(default=(), alias="memoriaCalculo")

    @property
    def beneficio_aplicado(self) -> bool:
        return self.beneficio != "Nenhum"

    @property
    def economia(self) -> float:
        if self.erro or not self.beneficio_aplicado:
            return 0.0
        return round(self.total_sem_beneficio - self.total_recolher, 2)


class Totalizers(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total_itens: int = Field(default=0, alias="totalItens")
    total_base: float = Field(default=0.0, alias="totalBase")
    total_difal: float = Field(default=0.0, alias="totalDifal")
    total_fcp: float = Field(default=0.0, alias="totalFcp")
    total_recolher: float = Field(default=0.0, alias="totalRecolher")
    itens_com_difal: int = Field(default=0, alias="itensComDifal")
    itens_sem_difal: int = Field(default=0, alias="itensSemDifal")
    itens_com_beneficio: int = Field(default=0, alias="itensComBeneficio")
    itens_com_fcp_manual: int = Field(default=0, alias="itensComFcpManual")
    itens_com_erro: int = Field(default=0, alias="itensComErro")
    economia_total: float = Field(default=0.0, alias="economiaTotal")


# -------------------------
# Saída do parser
# -------------------------
class ParseStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total_registros: int = Field(default=0, alias="totalRegistros")
    tipos_registros: int = Field(default=0, alias="tiposRegistros")
    registros_por_tipo: Dict[str, int] = Field(default_factory=dict, alias="registrosPorTipo")


class ParseResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    header: CompanyHeader
    items: Tuple[DifalItem, ...] = ()
    stats: ParseStats = Field(default_factory=ParseStats)
    avisos: Tuple[str, ...] = ()
    encoding: str = "utf-8"
    produtos_catalogo: int = Field(default=0, alias="produtosCatalogo")
    notas_fiscais: int = Field(default=0, alias="notasFiscais")

    def to_contract(self) -> Dict[str, Any]:
        """Formato consumido pela camada de apresentação."""

        return {
            "dadosEmpresa": {
                "razaoSocial": self.header.razao_social,
                "cnpj": self.header.cnpj,
                "uf": self.header.uf,
            },
            "periodoApuracao": self.header.periodo_apuracao,
            "itensDifal": [item.model_dump(mode="json", by_alias=True) for item in self.items],
            "estatisticas": self.stats.model_dump(mode="json", by_alias=True),
            "avisos": list(self.avisos),
            "encoding": self.encoding,
        }


# -------------------------
# Entradas da API
# -------------------------
class DocumentIn(BaseModel):
    """Entrada de um arquivo SPED bruto para processamento."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    filename: str
    content_type: Optional[str] = Field(default=None, alias="contentType")
    byte_stream: str = Field(alias="byteStream")
    encoding: Optional[str] = "base64"

    @field_validator("encoding")
    @classmethod
    def _normalise_encoding(cls, value: Optional[str]) -> str:
        return (value or "base64").lower()

    @field_validator("byte_stream")
    @classmethod
    def _ensure_stream(cls, value: str) -> str:
        if not value:
            raise ValueError("byteStream must not be empty")
        return value

    def decode(self) -> bytes:
        import base64
        import binascii

        if self.encoding not in {"base64", "b64"}:
            raise ValueError("Unsupported encoding; expected base64")
        try:
            return base64.b64decode(self.byte_stream, validate=True)
        except binascii.Error as exc:
            raise ValueError("Invalid base64 payload") from exc


class CalculationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    itens: List[DifalItem] = Field(default_factory=list)
    configuracao: CalculationConfig = Field(default_factory=CalculationConfig)
    configuracoes_itens: Dict[str, BenefitConfig] = Field(default_factory=dict, alias="configuracoesItens")


class CalculationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resultados: List[CalculationResult] = Field(default_factory=list)
    totalizadores: Totalizers = Field(default_factory=Totalizers)


class FilterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resultados: List[CalculationResult] = Field(default_factory=list)
    destinacao: Optional[Destinacao] = None
    cfop: Optional[str] = None
    apenas_com_difal: bool = Field(default=False, alias="apenasComDifal")
    valor_minimo_base: Optional[float] = Field(default=None, alias="valorMinimoBase")


__all__ = [
    "Beneficio",
    "BeneficioDocumento",
    "BenefitConfig",
    "CalculationConfig",
    "CalculationRequest",
    "CalculationResponse",
    "CalculationResult",
    "CompanyHeader",
    "Destinacao",
    "DifalItem",
    "DocumentIn",
    "FilterRequest",
    "Isencao",
    "Metodologia",
    "ParseResult",
    "ParseStats",
    "ReducaoAliquotaDestino",
    "ReducaoAliquotaOrigem",
    "ReducaoBase",
    "SENTINELAS_DESCRICAO",
    "Totalizers",
    "resolver_descricao",
]
