from typing import Callable, List, Optional

import pytest


LINHAS_SPED = [
    "|0000|017|0|01012025|31012025|EMPRESA TESTE LTDA|12345678000195||GO|1234567|5208707|||A|1|",
    "|0001|0|",
    "|0150|FORN01|FORNECEDOR SP|1058|11222333000181||123456789|3550308||RUA A|10||CENTRO|",
    "|0200|PROD01|CADEIRA DE ESCRITORIO|||UN|07|94013000||||",
    "|0990|5|",
    "|C001|0|",
    "|C100|0|1|FORN01|55|00|1|123|35250111222333000181550010000001231000001234|10012025|12012025|1250,00|0|0,00|0,00|1000,00|0|100,00|0,00|0,00|0,00|0,00|0,00|0,00|0,00|0,00|0,00|0,00|0,00|",
    "|C170|1|PROD01||2|UN|600,00|0,00|0|000|2556|001|600,00|7,00|42,00|0,00|0,00|0,00|0|||0,00|0,00|30,00|",
    "|C170|2|PROD99|MONITOR 24 POL|1|UN|400,00|0,00|0|020|2551|001|300,00|12,00|36,00|0,00|0,00|0,00|0|||0,00|0,00|0,00|",
    "|C170|3|PROD01||1|UN|50,00|0,00|0|000|1102|001|50,00|7,00|3,50|0,00|0,00|0,00|0|||0,00|0,00|0,00|",
    "|C190|000|2556|7,00|600,00|600,00|42,00|0,00|0,00|0,00|0,00||",
    "|C990|11|",
    "|9001|0|",
    "|9900|0000|1|",
    "|9990|3|",
]


def montar_sped(linhas: List[str], qtd_lin: Optional[int] = None) -> str:
    total = len(linhas) + 1 if qtd_lin is None else qtd_lin
    return "\n".join(list(linhas) + [f"|9999|{total}|"]) + "\n"


@pytest.fixture
def sped_linhas() -> List[str]:
    return list(LINHAS_SPED)


@pytest.fixture
def sped_texto() -> str:
    return montar_sped(LINHAS_SPED)


@pytest.fixture
def montar() -> Callable[..., str]:
    return montar_sped
