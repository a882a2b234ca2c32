import pytest

from difal.models import Destinacao
from difal.services.sped_parser import (
    EmptyFileError,
    EncodingError,
    MissingHeaderError,
    decode_content,
    identificar_beneficio_documento,
    parse,
    parse_lines,
)


def test_parse_reads_header_and_period(sped_texto):
    result = parse(sped_texto.encode("utf-8"))
    assert result.header.razao_social == "EMPRESA TESTE LTDA"
    assert result.header.cnpj == "12345678000195"
    assert result.header.uf == "GO"
    assert result.header.periodo_apuracao == "01/2025"
    assert result.header.dt_ini == "01/01/2025"
    assert result.encoding == "utf-8"
    assert result.avisos == ()


def test_only_difal_cfops_become_items(sped_texto):
    result = parse(sped_texto)
    assert [item.cfop for item in result.items] == ["2556", "2551"]
    assert result.items[0].destinacao is Destinacao.USO_CONSUMO
    assert result.items[1].destinacao is Destinacao.ATIVO_IMOBILIZADO
    assert result.stats.registros_por_tipo["C170"] == 3
    assert result.stats.total_registros == 16
    assert result.stats.tipos_registros == 14
    assert result.notas_fiscais == 1
    assert result.produtos_catalogo == 1


def test_items_carry_origin_from_participant_and_destination_from_header(sped_texto):
    item = parse(sped_texto).items[0]
    assert item.uf_origem == "SP"
    assert item.uf_destino == "GO"
    assert item.chave_nota == "1-123"


def test_freight_is_apportioned_into_the_base(sped_texto):
    primeiro, segundo = parse(sped_texto).items
    assert primeiro.frete_rateado == 60.0
    assert primeiro.vl_ipi == 30.0
    assert primeiro.base_calculo_difal == 690.0
    assert segundo.frete_rateado == 40.0
    assert segundo.base_calculo_difal == 440.0


def test_description_prefers_catalog_and_falls_back_to_complement(sped_texto):
    catalogado, avulso = parse(sped_texto).items
    assert catalogado.descricao == "CADEIRA DE ESCRITORIO"
    assert catalogado.ncm == "94013000"
    assert catalogado.status_vinculacao == "ENCONTRADO"
    assert avulso.descricao_cadastral == "PRODUTO NÃO CADASTRADO"
    assert avulso.descricao == "MONITOR 24 POL"
    assert avulso.ncm == "NCM NÃO ENCONTRADO"
    assert avulso.status_vinculacao == "NÃO ENCONTRADO"


def test_document_benefit_from_cst(sped_texto):
    avulso = parse(sped_texto).items[1]
    assert avulso.beneficios_fiscais.tem_beneficio is True
    assert avulso.beneficios_fiscais.tipo_beneficio == "REDUCAO_BASE"
    assert avulso.beneficios_fiscais.percentual_reducao == 25.0


def test_cst_90_with_low_rate_is_rate_reduction():
    from decimal import Decimal

    beneficio = identificar_beneficio_documento("090", Decimal("4"), Decimal("100"), Decimal("100"))
    assert beneficio.tipo_beneficio == "REDUCAO_ALIQUOTA"
    assert identificar_beneficio_documento("000", Decimal("7"), Decimal("100"), Decimal("100")).tem_beneficio is False


def test_missing_header_is_fatal(sped_linhas, montar):
    with pytest.raises(MissingHeaderError):
        parse(montar(sped_linhas[1:]))


def test_unparsable_header_is_fatal(sped_linhas, montar):
    sped_linhas[0] = "|0000|017|0|01012025|31012025||||GO|"
    with pytest.raises(MissingHeaderError):
        parse(montar(sped_linhas))


def test_empty_file_is_fatal():
    with pytest.raises(EmptyFileError):
        parse(b"")
    with pytest.raises(EmptyFileError):
        parse(b"  \n\n")


def test_binary_content_is_fatal():
    with pytest.raises(EncodingError):
        parse(b"|0000|\x00\x00\x00|")


def test_latin1_content_is_decoded(sped_linhas, montar):
    sped_linhas[0] = sped_linhas[0].replace("EMPRESA TESTE LTDA", "CONSTRUÇÕES AÇÃO LTDA")
    raw = montar(sped_linhas).encode("latin-1")
    text, encoding = decode_content(raw)
    assert encoding != "utf-8"
    assert "CONSTRU" in text
    result = parse(raw)
    assert result.header.razao_social.startswith("CONSTRU")
    assert len(result.items) == 2


def test_unknown_record_type_is_skipped_with_warning(sped_linhas, montar):
    sped_linhas.insert(5, "|X123|qualquer|coisa|")
    result = parse(montar(sped_linhas))
    assert len(result.items) == 2
    assert result.stats.registros_por_tipo["X123"] == 1
    assert any("X123" in aviso for aviso in result.avisos)


def test_malformed_lines_are_warnings(sped_linhas, montar):
    sped_linhas.insert(8, "|C170|9|PROD01|")
    sped_linhas.insert(3, "linha sem delimitadores")
    result = parse(montar(sped_linhas))
    assert len(result.items) == 2
    assert any("C170" in aviso and "mínimo" in aviso for aviso in result.avisos)
    assert any("formato inválido" in aviso for aviso in result.avisos)


def test_child_without_parent_is_skipped(sped_linhas, montar):
    orfao = "|C170|1|PROD01||1|UN|10,00|0,00|0|000|2556|001|10,00|7,00|0,70|0,00|0,00|0,00|0|||0,00|0,00|0,00|"
    sped_linhas.insert(6, orfao)
    result = parse(montar(sped_linhas))
    assert len(result.items) == 2
    assert any("sem documento C100" in aviso for aviso in result.avisos)


def test_trailer_mismatch_is_a_warning(sped_linhas, montar):
    result = parse(montar(sped_linhas, qtd_lin=99))
    assert len(result.items) == 2
    assert any("9999" in aviso for aviso in result.avisos)


def test_missing_trailer_is_a_warning(sped_linhas):
    result = parse("\n".join(sped_linhas))
    assert any("9999" in aviso for aviso in result.avisos)


def test_streaming_entry_point_matches_whole_file(sped_texto):
    assert parse_lines(sped_texto.splitlines()) == parse(sped_texto.encode("utf-8"))


def test_contract_shape(sped_texto):
    contract = parse(sped_texto).to_contract()
    assert contract["dadosEmpresa"] == {
        "razaoSocial": "EMPRESA TESTE LTDA",
        "cnpj": "12345678000195",
        "uf": "GO",
    }
    assert contract["periodoApuracao"] == "01/2025"
    assert contract["itensDifal"][0]["codItem"] == "PROD01"
    assert contract["estatisticas"]["totalRegistros"] == 16
    assert contract["avisos"] == []


def test_text_with_byte_order_mark_matches_bytes(sped_texto):
    com_bom = parse("\ufeff" + sped_texto)
    assert com_bom.header.razao_social == "EMPRESA TESTE LTDA"
    assert com_bom == parse(b"\xef\xbb\xbf" + sped_texto.encode("utf-8"))
    assert parse_lines(("\ufeff" + sped_texto).splitlines()).header.cnpj == "12345678000195"


def test_negative_item_value_is_skipped_with_warning(sped_linhas, montar):
    sped_linhas[7] = sped_linhas[7].replace("|600,00|0,00|", "|-600,00|0,00|")
    result = parse(montar(sped_linhas))
    assert [item.cfop for item in result.items] == ["2551"]
    assert any("VL_ITEM negativo" in aviso for aviso in result.avisos)
