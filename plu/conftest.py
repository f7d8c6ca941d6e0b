from __future__ import annotations

import pytest

UB_ZONE_TEXT = """ZONE UB - ZONE URBAINE MIXTE

Article UB1 - Occupations et utilisations du sol interdites
Sont interdites : les installations classées soumises à autorisation, les entrepôts et les terrains de camping.

Article UB2 - Occupations et utilisations du sol soumises à conditions particulières
Sont admises sous conditions : les constructions à usage d'habitation et les bureaux dans la limite de 500 m².

Article UB6 - Implantation des constructions par rapport aux voies
Les constructions doivent respecter un recul minimum de 5 mètres par rapport à l'alignement des voies publiques.

Article UB7 - Implantation des constructions par rapport aux limites séparatives
Par rapport aux limites séparatives, le recul minimum est de 3 mètres.

Article UB9 - Emprise au sol
L'emprise au sol des constructions ne peut excéder 40% de la superficie du terrain.

Article UB10 - Hauteur maximale des constructions
La hauteur maximale des constructions est fixée à 12 mètres au faîtage. Le nombre d'étages est limité à R+2.

Article UB12 - Stationnement
Il est exigé 1 place de stationnement par logement. Pour les bureaux, 1 place pour 40 m² de surface de plancher. Pour les commerces, 1 place pour 50 m² de surface de vente.

Article UB13 - Espaces libres et plantations
Au moins 30% de la superficie du terrain doit être traitée en espaces verts.
"""

N_ZONE_TEXT = """ZONE N - ZONE NATURELLE ET FORESTIERE

Article N1 - Occupations et utilisations du sol interdites
Sont interdites : les constructions à usage d'habitation, les commerces et les industries.

Article N10 - Hauteur maximale des constructions
La hauteur des constructions ne peut excéder 7 mètres.
"""

DOCUMENT_TEXT = (
    "REGLEMENT DU PLAN LOCAL D'URBANISME\n"
    "Dispositions applicables aux zones urbaines et naturelles\n\n"
    + UB_ZONE_TEXT
    + "\n"
    + N_ZONE_TEXT
)


@pytest.fixture
def ub_zone_text() -> str:
    return UB_ZONE_TEXT


@pytest.fixture
def n_zone_text() -> str:
    return N_ZONE_TEXT


@pytest.fixture
def document_text() -> str:
    return DOCUMENT_TEXT
