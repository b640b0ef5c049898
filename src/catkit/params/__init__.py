from catkit.params.item_params import (
    ItemParameter,
    ItemParamList,
    ItemStatus,
    promote_manual,
)
from catkit.params.person_params import PersonParameter, PersonParamList
from catkit.params.responses import ResponseMatrix

__all__ = [
    "ItemParameter",
    "ItemParamList",
    "ItemStatus",
    "promote_manual",
    "PersonParameter",
    "PersonParamList",
    "ResponseMatrix",
]
