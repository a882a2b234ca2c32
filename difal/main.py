import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from difal.core.logger import log_event
from difal.core.settings import settings
from difal.models import (
    CalculationRequest,
    CalculationResponse,
    CalculationResult,
    DocumentIn,
    FilterRequest,
)
from difal.services.audit_log import export_calculation_log
from difal.services.difal_calculator import calcular_todos, obter_totalizadores
from difal.services.sped_parser import ParseError, parse
from difal.utils.aggregator import distribuicao_destinacao, filtrar_resultados

app = FastAPI(title="DIFAL Engine", version="1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "max_upload_mb": settings.MAX_UPLOAD_MB,
        "version": app.version,
    }


def _check_upload(name: str, content: bytes, mime: Optional[str]) -> None:
    size_mb = len(content) / 1024 / 1024
    if size_mb > settings.MAX_UPLOAD_MB:
        raise HTTPException(413, f"{name} excede limite de {settings.MAX_UPLOAD_MB} MB")
    suffix = Path(name).suffix.lower()
    if suffix and suffix not in settings.ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Extensão não suportada para {name}.")
    mime = mime or mimetypes.guess_type(name)[0] or ""
    if mime and not any(mime.startswith(prefix) for prefix in settings.ALLOWED_MIME_PREFIXES):
        raise HTTPException(400, f"MIME type não autorizado para {name}.")


def _parse_sped(name: str, content: bytes) -> Dict[str, Any]:
    try:
        result = parse(content)
    except ParseError as exc:
        log_event("upload", "WARN", "Arquivo SPED rejeitado", {"arquivo": name, "erro": str(exc)})
        raise HTTPException(422, str(exc)) from exc

    log_event("upload", "INFO", f"SPED processado: {name}", {"itens": len(result.items)})
    contract = result.to_contract()
    contract["distribuicaoDestinacao"] = distribuicao_destinacao(result.items)
    contract["produtosCatalogo"] = result.produtos_catalogo
    contract["notasFiscais"] = result.notas_fiscais
    return contract


@app.post("/sped/upload")
async def upload_sped(payload: DocumentIn) -> Dict[str, Any]:
    try:
        content = payload.decode()
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    _check_upload(payload.filename, content, payload.content_type)
    return _parse_sped(payload.filename, content)


@app.post("/sped/upload/file")
async def upload_sped_file(file: UploadFile = File(...)) -> Dict[str, Any]:
    name = file.filename or "arquivo.txt"
    content = await file.read()
    _check_upload(name, content, file.content_type)
    return _parse_sped(name, content)


@app.post("/difal/calcular", response_model=CalculationResponse)
async def calcular(payload: CalculationRequest) -> CalculationResponse:
    resultados = calcular_todos(payload.itens, payload.configuracao, payload.configuracoes_itens)
    totalizadores = obter_totalizadores(resultados)
    try:
        await export_calculation_log(resultados, totalizadores, payload.configuracao)
    except OSError as exc:  # pragma: no cover - defensive
        log_event("audit_log", "ERROR", "Falha ao exportar log de processamento", {"error": str(exc)})
    return CalculationResponse(resultados=resultados, totalizadores=totalizadores)


@app.post("/difal/filtrar", response_model=List[CalculationResult])
async def filtrar(payload: FilterRequest) -> List[CalculationResult]:
    return filtrar_resultados(
        payload.resultados,
        destinacao=payload.destinacao,
        cfop=payload.cfop,
        apenas_com_difal=payload.apenas_com_difal,
        valor_minimo_base=payload.valor_minimo_base,
    )
