from decimal import Decimal

import pytest

from difal.models import BenefitConfig, Isencao, ReducaoAliquotaOrigem, ReducaoBase
from difal.rules.benefit_resolver import resolver_beneficio, validar_beneficio


def test_flat_configuration_is_lifted_into_the_union():
    config = BenefitConfig.model_validate({"beneficio": "reducao-aliquota-origem", "aliqOrigemEfetiva": 4})
    assert isinstance(config.beneficio, ReducaoAliquotaOrigem)
    assert config.beneficio.aliq_origem_efetiva == 4
    assert BenefitConfig.model_validate({"beneficio": ""}).beneficio is None


def test_individual_configuration_wins_without_merge():
    global_config = BenefitConfig(beneficio=ReducaoBase(carga_efetiva_desejada=12), fcp_manual=1)
    individual = {"P1": BenefitConfig(fcp_manual=0)}
    resolved = resolver_beneficio("P1", global_config, individual)
    assert resolved.origem == "individual"
    assert resolved.beneficio is None
    assert resolved.fcp_manual == Decimal("0")


def test_global_configuration_applies_to_items_without_their_own():
    global_config = BenefitConfig(beneficio=Isencao())
    resolved = resolver_beneficio("P2", global_config, {"P1": BenefitConfig(fcp_manual=0)})
    assert resolved.origem == "global"
    assert isinstance(resolved.beneficio, Isencao)
    assert resolved.label == "Isenção"


def test_global_key_in_item_map():
    mapa = {"global": BenefitConfig(fcp_manual=1.5)}
    resolved = resolver_beneficio("P9", None, mapa)
    assert resolved.origem == "global"
    assert resolved.fcp_manual == Decimal("1.5")


def test_empty_item_configuration_falls_back_to_global():
    global_config = BenefitConfig(fcp_manual=1)
    resolved = resolver_beneficio("P1", global_config, {"P1": BenefitConfig()})
    assert resolved.origem == "global"


def test_no_configuration():
    resolved = resolver_beneficio("P1")
    assert resolved.origem == "nenhuma"
    assert resolved.label == "Nenhum"
    assert resolved.configurado is False


def test_incomplete_benefit_has_no_effect_but_stays_configured():
    mapa = {"P1": BenefitConfig(beneficio=ReducaoBase())}
    resolved = resolver_beneficio("P1", None, mapa)
    assert resolved.configurado is True
    assert resolved.beneficio is None
    assert len(resolved.pendencias) == 1
    assert "Redução de Base" in resolved.pendencias[0]


def test_invalid_manual_fcp_is_reported():
    resolved = resolver_beneficio("P1", BenefitConfig(fcp_manual=150))
    assert resolved.fcp_manual is None
    assert resolved.pendencias


def test_resolver_does_not_touch_the_callers_mapping():
    mapa = {"P1": BenefitConfig(beneficio=ReducaoBase(carga_efetiva_desejada=12))}
    antes = dict(mapa)
    resolver_beneficio("P1", None, mapa)
    resolver_beneficio("P2", None, mapa)
    assert mapa == antes


def test_validation_rules():
    assert validar_beneficio(ReducaoBase(carga_efetiva_desejada=0)) is not None
    assert validar_beneficio(ReducaoBase(carga_efetiva_desejada=12)) is None
    assert validar_beneficio(ReducaoAliquotaOrigem(aliq_origem_efetiva=0)) is None
    assert validar_beneficio(ReducaoAliquotaOrigem(aliq_origem_efetiva=-1)) is not None
    assert validar_beneficio(Isencao()) is None
    with pytest.raises(TypeError):
        validar_beneficio(object())
