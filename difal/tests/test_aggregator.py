from difal.models import CalculationConfig, DifalItem
from difal.services.difal_calculator import calcular_todos
from difal.utils.aggregator import distribuicao_destinacao, filtrar_resultados, obter_totalizadores


def _itens():
    base = {"cfop": "2556", "destinacao": "uso-consumo", "ufOrigem": "SP", "ufDestino": "GO"}
    return [
        DifalItem.model_validate({**base, "codItem": "A", "vlItem": 1000.0}),
        DifalItem.model_validate(
            {**base, "codItem": "B", "vlItem": 50.0, "cfop": "2551", "destinacao": "ativo-imobilizado"}
        ),
        DifalItem.model_validate({**base, "codItem": "C", "vlItem": 500.0, "ufOrigem": "GO"}),
    ]


def test_filters():
    resultados = calcular_todos(_itens(), CalculationConfig())
    assert [r.item.cod_item for r in filtrar_resultados(resultados, destinacao="ativo-imobilizado")] == ["B"]
    assert [r.item.cod_item for r in filtrar_resultados(resultados, cfop="2556")] == ["A", "C"]
    assert [r.item.cod_item for r in filtrar_resultados(resultados, apenas_com_difal=True)] == ["A", "B"]
    assert [r.item.cod_item for r in filtrar_resultados(resultados, valor_minimo_base=100)] == ["A"]
    assert len(filtrar_resultados(resultados)) == 3


def test_totals_skip_errors():
    totais = obter_totalizadores(calcular_todos(_itens(), CalculationConfig()))
    assert totais.total_itens == 3
    assert totais.itens_com_erro == 1
    assert totais.total_base == 1050.0
    assert totais.total_recolher == 126.0
    assert totais.itens_sem_difal == 0


def test_empty_totals():
    totais = obter_totalizadores([])
    assert totais.total_itens == 0
    assert totais.total_recolher == 0.0


def test_destination_distribution():
    assert distribuicao_destinacao(_itens()) == {"uso-consumo": 2, "ativo-imobilizado": 1, "total": 3}
