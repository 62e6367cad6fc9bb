import copy

import pytest
from bson import ObjectId

from errors import Duplicate, InvalidInput, ShippingAddressNotFound, UserNotFound
from profiles import ProfileService
from schemas import BasicInfoUpdate, SellerInfoUpdate, ShippingAddressCreate, ShippingAddressUpdate
from stores import ShippingAddressStore, UserStore

from .conftest import COMPLETE_PROFILE, COMPLETE_SELLER_INFO


def address_payload(**fields):
    data = {
        "full_name": "Nguyen Van A",
        "phone": "0901234567",
        "province": "Ha Noi",
        "district": "Ba Dinh",
        "ward": "Kim Ma",
    }
    data.update(fields)
    return ShippingAddressCreate(**data)


def test_empty_profile_completion(profile_service, make_user):
    user = make_user()
    result = profile_service.completion(user["_id"])
    assert result["percentage"] == 0
    assert result["missing_fields"] == [
        "Full name", "Phone number", "Province/City", "District", "Ward", "Avatar", "Default shipping address",
    ]


def test_basic_fields_only_completion(profile_service, make_user):
    user = make_user(profile=copy.deepcopy(COMPLETE_PROFILE))
    result = profile_service.completion(user["_id"])
    assert result["percentage"] == 71
    assert result["missing_fields"] == ["Avatar", "Default shipping address"]


def test_full_completion(profile_service, make_user):
    profile = dict(copy.deepcopy(COMPLETE_PROFILE), avatar="https://img.example.com/me.png")
    user = make_user(profile=profile)
    profile_service.add_address(user["_id"], address_payload())
    assert profile_service.completion(user["_id"]) == {"percentage": 100, "missing_fields": []}


def test_can_sell(profile_service, make_user):
    user = make_user(profile=copy.deepcopy(COMPLETE_PROFILE), seller_info=copy.deepcopy(COMPLETE_SELLER_INFO))
    assert profile_service.can_sell(user["_id"]) == {"can_sell": True}


def test_can_sell_without_terms(profile_service, make_user):
    seller_info = copy.deepcopy(COMPLETE_SELLER_INFO)
    seller_info["agreements"]["terms_accepted"] = False
    user = make_user(profile=copy.deepcopy(COMPLETE_PROFILE), seller_info=seller_info)

    result = profile_service.can_sell(user["_id"])
    assert result["can_sell"] is False
    assert result["reason"] == "PROFILE_INCOMPLETE"
    assert result["missing_fields"] == ["Terms accepted"]


def test_can_sell_reports_basic_fields_first(profile_service, make_user):
    user = make_user(seller_info=copy.deepcopy(COMPLETE_SELLER_INFO))
    result = profile_service.can_sell(user["_id"])
    assert result["can_sell"] is False
    assert "Full name" in result["missing_fields"]


def test_can_buy_needs_default_address(profile_service, make_user):
    user = make_user(profile=copy.deepcopy(COMPLETE_PROFILE))
    result = profile_service.can_buy(user["_id"])
    assert result == {"can_buy": False, "reason": "PROFILE_INCOMPLETE", "missing_fields": ["Default shipping address"]}

    profile_service.add_address(user["_id"], address_payload())
    assert profile_service.can_buy(user["_id"]) == {"can_buy": True}


def test_eligibility_for_unknown_user(profile_service):
    for check in (profile_service.can_sell, profile_service.can_buy, profile_service.completion):
        with pytest.raises(UserNotFound):
            check(ObjectId())


def test_update_basic_info_keeps_avatar_street_and_flags(db, profile_service, make_user):
    profile = copy.deepcopy(COMPLETE_PROFILE)
    profile.update(avatar="https://img.example.com/me.png", phone_verified=True)
    profile["address"]["street"] = "12 Kim Ma"
    user = make_user(profile=profile)

    data = BasicInfoUpdate(
        full_name="Tran Thi B",
        phone="0911111111",
        address={"province": "Da Nang", "district": "Hai Chau", "ward": "Thach Thang"},
    )
    updated = profile_service.update_basic_info(user["_id"], data)

    assert updated["full_name"] == "Tran Thi B"
    assert updated["avatar"] == "https://img.example.com/me.png"
    assert updated["phone_verified"] is True
    assert updated["address"] == {"province": "Da Nang", "district": "Hai Chau", "ward": "Thach Thang", "street": "12 Kim Ma"}
    assert db["user"].find_one({"_id": user["_id"]})["profile"] == updated


def test_update_seller_info_merges(profile_service, make_user):
    user = make_user(seller_info=copy.deepcopy(COMPLETE_SELLER_INFO))
    updated = profile_service.update_seller_info(
        user["_id"], SellerInfoUpdate(trading_area="Ho Chi Minh", payment_methods={"bank_transfer": True}),
    )
    assert updated["shop_name"] == "A's closet"
    assert updated["trading_area"] == "Ho Chi Minh"
    assert updated["payment_methods"]["bank_transfer"] is True
    assert updated["agreements"] == {"terms_accepted": True, "no_prohibited_items": True}


def test_update_seller_info_requires_both_agreements(profile_service, make_user):
    user = make_user()
    with pytest.raises(InvalidInput):
        profile_service.update_seller_info(
            user["_id"], SellerInfoUpdate(agreements={"terms_accepted": True, "no_prohibited_items": False}),
        )
    with pytest.raises(InvalidInput):
        profile_service.update_seller_info(user["_id"], SellerInfoUpdate(agreements={"terms_accepted": True}))


def test_first_address_becomes_default(profile_service, make_user):
    user = make_user()
    first = profile_service.add_address(user["_id"], address_payload())
    second = profile_service.add_address(user["_id"], address_payload(ward="Giang Vo"))
    assert first["is_default"] is True
    assert second["is_default"] is False
    assert first["is_default_pickup"] is False


def test_only_one_default_and_one_pickup_per_user(db, profile_service, make_user):
    user = make_user()
    profile_service.add_address(user["_id"], address_payload(is_default_pickup=True))
    second = profile_service.add_address(user["_id"], address_payload(is_default=True, is_default_pickup=True))

    assert db["shippingaddress"].count_documents({"user_id": user["_id"], "is_default": True}) == 1
    assert db["shippingaddress"].count_documents({"user_id": user["_id"], "is_default_pickup": True}) == 1
    assert db["shippingaddress"].find_one({"user_id": user["_id"], "is_default": True})["_id"] == second["_id"]


def test_update_address_moves_default(db, profile_service, make_user):
    user = make_user()
    first = profile_service.add_address(user["_id"], address_payload(street="1 Le Loi"))
    second = profile_service.add_address(user["_id"], address_payload())

    updated = profile_service.update_address(
        user["_id"], second["_id"], ShippingAddressUpdate(is_default=True, street=None, phone="0999999999"),
    )
    assert updated["is_default"] is True
    assert updated["phone"] == "0999999999"
    assert db["shippingaddress"].find_one({"_id": first["_id"]})["is_default"] is False

    cleared = profile_service.update_address(user["_id"], first["_id"], ShippingAddressUpdate(street=None))
    assert cleared["street"] is None


def test_update_address_ignores_flag_clearing(profile_service, make_user):
    user = make_user()
    address = profile_service.add_address(user["_id"], address_payload())
    updated = profile_service.update_address(user["_id"], address["_id"], ShippingAddressUpdate(is_default=False))
    assert updated["is_default"] is True


def test_foreign_address_is_not_found(profile_service, make_user):
    owner, other = make_user(), make_user()
    address = profile_service.add_address(owner["_id"], address_payload())
    with pytest.raises(ShippingAddressNotFound):
        profile_service.update_address(other["_id"], address["_id"], ShippingAddressUpdate(ward="X"))
    with pytest.raises(ShippingAddressNotFound):
        profile_service.delete_address(other["_id"], address["_id"])


def test_delete_address(profile_service, make_user):
    user = make_user()
    address = profile_service.add_address(user["_id"], address_payload())
    assert profile_service.delete_address(user["_id"], str(address["_id"])) == {"success": True}
    assert profile_service.list_addresses(user["_id"]) == []


def test_get_profile_payload(profile_service, make_user):
    user = make_user(profile=copy.deepcopy(COMPLETE_PROFILE), seller_info=copy.deepcopy(COMPLETE_SELLER_INFO))
    profile_service.add_address(user["_id"], address_payload())
    result = profile_service.get_profile(user["_id"])
    assert result["profile"]["full_name"] == "Nguyen Van A"
    assert result["seller_info"]["shop_name"] == "A's closet"
    assert len(result["shipping_addresses"]) == 1
    assert result["completion"]["missing_fields"] == ["Avatar"]


class StaleAddressStore(ShippingAddressStore):
    """Every add sees an empty address book, as two concurrent first adds would."""

    def count_for_user(self, user_id):
        return 0

    def unset_flag(self, user_id, flag, except_id=None):
        pass


def test_concurrent_first_addresses_keep_one_default(db, make_user):
    service = ProfileService(UserStore(db), StaleAddressStore(db))
    user = make_user()

    first = service.add_address(user["_id"], address_payload())
    second = service.add_address(user["_id"], address_payload(ward="Giang Vo"))

    assert first["is_default"] is True
    assert second["is_default"] is False
    assert db["shippingaddress"].count_documents({"user_id": user["_id"], "is_default": True}) == 1


def test_explicit_default_losing_a_race_is_a_conflict(db, make_user):
    service = ProfileService(UserStore(db), StaleAddressStore(db))
    user = make_user()
    service.add_address(user["_id"], address_payload(is_default_pickup=True))

    with pytest.raises(Duplicate) as exc:
        service.add_address(user["_id"], address_payload(is_default=True))
    assert exc.value.status_code == 409
    assert exc.value.code == "SHIPPING_ADDRESS_DEFAULT_CONFLICT"
    assert db["shippingaddress"].count_documents({"user_id": user["_id"]}) == 1


def test_moving_default_transfers_the_unique_key(db, profile_service, make_user):
    user = make_user()
    first = profile_service.add_address(user["_id"], address_payload())
    second = profile_service.add_address(user["_id"], address_payload(ward="Giang Vo"))

    profile_service.update_address(user["_id"], second["_id"], ShippingAddressUpdate(is_default=True))
    profile_service.update_address(user["_id"], first["_id"], ShippingAddressUpdate(is_default=True))

    defaults = list(db["shippingaddress"].find({"user_id": user["_id"], "is_default": True}))
    assert [d["_id"] for d in defaults] == [first["_id"]]
