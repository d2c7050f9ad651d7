from signflow.modules.envelopes.services.field_validator import (
    FieldBox,
    boxes_overlap,
    validate_fields,
    validate_page_range,
)

PAGE_W, PAGE_H = 612.0, 792.0


def box(id, page=1, x=10, y=10, w=100, h=30):
    return FieldBox(id=id, page=page, x=x, y=y, width=w, height=h)


def test_campos_validos_sin_errores():
    result = validate_fields([box("a"), box("b", y=100)], PAGE_W, PAGE_H)
    assert result.valid
    assert result.errors == []


def test_rechaza_solapamiento_en_la_misma_pagina():
    result = validate_fields([box("a"), box("b", x=50, y=20)], PAGE_W, PAGE_H)
    assert not result.valid
    assert [e.type for e in result.errors] == ["OVERLAP"]
    assert result.errors[0].field_id == "a"
    assert "b" in result.errors[0].message


def test_bordes_que_se_tocan_cuentan_como_solapamiento():
    a = box("a", x=0, y=0, w=100, h=30)
    b = box("b", x=100, y=0, w=50, h=30)
    assert boxes_overlap(a, b)
    assert not validate_fields([a, b], PAGE_W, PAGE_H).valid


def test_misma_posicion_en_paginas_distintas_es_valida():
    result = validate_fields([box("a", page=1), box("b", page=2)], PAGE_W, PAGE_H)
    assert result.valid


def test_fuera_de_los_limites():
    result = validate_fields([box("a", x=600, w=50)], PAGE_W, PAGE_H)
    assert [e.type for e in result.errors] == ["INVALID_POSITION"]


def test_posicion_negativa_y_tamano_cero():
    result = validate_fields([box("a", x=-1, w=0)], PAGE_W, PAGE_H)
    types = {e.type for e in result.errors}
    assert "INVALID_POSITION" in types
    assert "INVALID_SIZE" in types


def test_pagina_cero_invalida():
    result = validate_fields([box("a", page=0)], PAGE_W, PAGE_H)
    assert "INVALID_PAGE" in {e.type for e in result.errors}


def test_caja_que_llena_la_pagina_es_valida():
    result = validate_fields([box("a", x=0, y=0, w=PAGE_W, h=PAGE_H)], PAGE_W, PAGE_H)
    assert result.valid


def test_fracciones_escaladas_a_puntos():
    scaled = FieldBox("a", 1, 0.5, 0.25, 0.1, 0.1).scaled(PAGE_W, PAGE_H)
    assert scaled.x == 306.0
    assert scaled.y == 198.0
    assert validate_fields([scaled], PAGE_W, PAGE_H).valid


def test_errores_reportan_cada_par_solapado():
    fields = [box("a", x=10), box("b", x=20), box("c", x=30)]
    result = validate_fields(fields, PAGE_W, PAGE_H)
    assert len([e for e in result.errors if e.type == "OVERLAP"]) == 3


def test_pagina_inexistente_en_el_documento():
    result = validate_page_range([box("a", page=3)], page_count=2)
    assert [e.type for e in result.errors] == ["PAGE_NOT_FOUND"]
    assert validate_page_range([box("a", page=2)], page_count=2).valid
