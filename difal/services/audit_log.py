"""Processing log export of a calculation run, kept for audit."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import aiofiles

from difal.core.logger import log_event
from difal.core.settings import settings
from difal.models import CalculationConfig, CalculationResult, Totalizers


def build_log_payload(
    resultados: Iterable[CalculationResult],
    totalizadores: Totalizers,
    config: Optional[CalculationConfig] = None,
) -> Dict[str, Any]:
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "configuracao": config.model_dump(mode="json", by_alias=True) if config else None,
        "totalizadores": totalizadores.model_dump(mode="json", by_alias=True),
        "itens": [
            {
                "codItem": resultado.item.cod_item,
                "status": resultado.status,
                "totalRecolher": resultado.total_recolher,
                "beneficio": resultado.beneficio,
                "mensagemErro": resultado.mensagem_erro,
                "memoriaCalculo": list(resultado.memoria_calculo),
            }
            for resultado in resultados
        ],
    }


async def export_calculation_log(
    resultados: Iterable[CalculationResult],
    totalizadores: Totalizers,
    config: Optional[CalculationConfig] = None,
) -> Optional[Path]:
    if not settings.EXPORT_PROCESSING_LOG:
        return None
    settings.ensure_directories()
    payload = build_log_payload(resultados, totalizadores, config)
    path: Path = settings.processing_log_file
    async with aiofiles.open(path, "w", encoding="utf-8") as fp:
        await fp.write(json.dumps(payload, ensure_ascii=False, indent=2))
    log_event("audit_log", "DEBUG", "Log de processamento exportado", {"path": str(path)})
    return path
