"""
User profile, seller info, shipping addresses and the eligibility checks
derived from them. Completion and eligibility are computed on every call
from stored state; nothing here is cached.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from errors import Duplicate, InvalidInput, ShippingAddressNotFound, UserNotFound
from schemas import (
    BasicInfoUpdate, SellerInfo, SellerInfoUpdate, ShippingAddress, ShippingAddressCreate, ShippingAddressUpdate,
)
from stores import ShippingAddressStore, UserStore

logger = logging.getLogger(__name__)

PROFILE_INCOMPLETE = "PROFILE_INCOMPLETE"
DEFAULT_CONFLICT = "SHIPPING_ADDRESS_DEFAULT_CONFLICT"

# (label, getter) pairs for the basic profile
BASIC_FIELDS = [
    ("Full name", lambda p: p.get("full_name")),
    ("Phone number", lambda p: p.get("phone")),
    ("Province/City", lambda p: (p.get("address") or {}).get("province")),
    ("District", lambda p: (p.get("address") or {}).get("district")),
    ("Ward", lambda p: (p.get("address") or {}).get("ward")),
]
AVATAR_LABEL = "Avatar"
DEFAULT_ADDRESS_LABEL = "Default shipping address"
COMPLETION_FACETS = len(BASIC_FIELDS) + 2


def missing_basic_fields(profile: Optional[Dict[str, Any]]) -> List[str]:
    profile = profile or {}
    return [label for label, get in BASIC_FIELDS if not get(profile)]


def missing_seller_fields(seller_info: Optional[Dict[str, Any]]) -> List[str]:
    info = seller_info or {}
    agreements = info.get("agreements") or {}
    missing = []
    if not info.get("shop_name"):
        missing.append("Shop name")
    if not info.get("trading_area"):
        missing.append("Trading area")
    if agreements.get("terms_accepted") is not True:
        missing.append("Terms accepted")
    if agreements.get("no_prohibited_items") is not True:
        missing.append("No prohibited items agreement")
    return missing


def _default_conflict() -> Duplicate:
    return Duplicate("Another address was made default at the same time", code=DEFAULT_CONFLICT)


def _merge(current: Optional[Dict[str, Any]], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current or {})
    merged.update(update)
    return merged


class ProfileService:
    def __init__(self, users: UserStore, addresses: ShippingAddressStore):
        self.users = users
        self.addresses = addresses

    def _user(self, user_id) -> Dict[str, Any]:
        user = self.users.find_by_id(user_id)
        if not user:
            raise UserNotFound()
        return user

    # ---------- derived state ----------

    def _completion(self, user: Dict[str, Any]) -> Dict[str, Any]:
        profile = user.get("profile") or {}
        missing = missing_basic_fields(profile)
        if not profile.get("avatar"):
            missing.append(AVATAR_LABEL)
        if not self.addresses.has_default(user["_id"]):
            missing.append(DEFAULT_ADDRESS_LABEL)
        done = COMPLETION_FACETS - len(missing)
        return {"percentage": round(100 * done / COMPLETION_FACETS), "missing_fields": missing}

    def completion(self, user_id) -> Dict[str, Any]:
        return self._completion(self._user(user_id))

    def can_sell(self, user_id) -> Dict[str, Any]:
        user = self._user(user_id)
        missing = missing_basic_fields(user.get("profile"))
        if missing:
            return {"can_sell": False, "reason": PROFILE_INCOMPLETE, "missing_fields": missing}
        missing = missing_seller_fields(user.get("seller_info"))
        if missing:
            return {"can_sell": False, "reason": PROFILE_INCOMPLETE, "missing_fields": missing}
        return {"can_sell": True}

    def can_buy(self, user_id) -> Dict[str, Any]:
        user = self._user(user_id)
        missing = missing_basic_fields(user.get("profile"))
        if missing:
            return {"can_buy": False, "reason": PROFILE_INCOMPLETE, "missing_fields": missing}
        if not self.addresses.has_default(user["_id"]):
            return {"can_buy": False, "reason": PROFILE_INCOMPLETE, "missing_fields": [DEFAULT_ADDRESS_LABEL]}
        return {"can_buy": True}

    # ---------- profile ----------

    def get_profile(self, user_id) -> Dict[str, Any]:
        user = self._user(user_id)
        return {
            "profile": user.get("profile") or {},
            "shipping_addresses": self.addresses.find_by_user_id(user["_id"]),
            "seller_info": user.get("seller_info") or {},
            "completion": self._completion(user),
        }

    def update_basic_info(self, user_id, data: BasicInfoUpdate) -> Dict[str, Any]:
        user = self._user(user_id)
        current = user.get("profile") or {}
        current_address = current.get("address") or {}
        profile = {
            "full_name": data.full_name,
            "phone": data.phone,
            "phone_verified": current.get("phone_verified", False),
            "email_verified": current.get("email_verified", False),
            "avatar": data.avatar or current.get("avatar"),
            "address": {
                "province": data.address.province,
                "district": data.address.district,
                "ward": data.address.ward,
                "street": data.address.street or current_address.get("street"),
            },
        }
        self.users.set_fields(user["_id"], {"profile": profile})
        logger.info("Profile basic info updated for user %s", user_id)
        return profile

    def update_seller_info(self, user_id, data: SellerInfoUpdate) -> Dict[str, Any]:
        user = self._user(user_id)
        if data.agreements is not None:
            if data.agreements.terms_accepted is not True or data.agreements.no_prohibited_items is not True:
                raise InvalidInput("Must accept all agreements")

        current = user.get("seller_info") or SellerInfo().model_dump()
        seller_info = dict(current)
        if data.shop_name is not None:
            seller_info["shop_name"] = data.shop_name
        if data.trading_area is not None:
            seller_info["trading_area"] = data.trading_area
        for key in ("contact_methods", "payment_methods", "agreements"):
            part = getattr(data, key)
            if part is not None:
                seller_info[key] = _merge(current.get(key), part.model_dump(exclude_none=True))

        self.users.set_fields(user["_id"], {"seller_info": seller_info})
        logger.info("Seller info updated for user %s", user_id)
        return seller_info

    # ---------- shipping addresses ----------

    def list_addresses(self, user_id) -> List[Dict[str, Any]]:
        user = self._user(user_id)
        return self.addresses.find_by_user_id(user["_id"])

    def add_address(self, user_id, data: ShippingAddressCreate) -> Dict[str, Any]:
        user = self._user(user_id)
        uid = user["_id"]
        first = self.addresses.count_for_user(uid) == 0
        is_default = data.is_default if data.is_default is not None else first
        is_default_pickup = bool(data.is_default_pickup)
        if is_default:
            self.addresses.unset_flag(uid, "is_default")
        if is_default_pickup:
            self.addresses.unset_flag(uid, "is_default_pickup")

        address = ShippingAddress(
            user_id=uid,
            **data.model_dump(exclude={"is_default", "is_default_pickup"}),
            is_default=is_default,
            is_default_pickup=is_default_pickup,
        )
        try:
            doc = self.addresses.insert(address)
        except DuplicateKeyError:
            if data.is_default is not None or is_default_pickup:
                raise _default_conflict()
            # another first address won the implicit default
            logger.info("Implicit default lost a race for user %s, adding as regular address", user_id)
            address.is_default = False
            doc = self.addresses.insert(address)
        logger.info("Shipping address added for user %s", user_id)
        return doc

    def _address(self, user_id, address_id) -> Dict[str, Any]:
        address = self.addresses.find_for_user(address_id, user_id)
        if not address:
            raise ShippingAddressNotFound()
        return address

    def update_address(self, user_id, address_id, data: ShippingAddressUpdate) -> Dict[str, Any]:
        user = self._user(user_id)
        address = self._address(user["_id"], address_id)
        fields = data.model_dump(exclude_unset=True, exclude={"is_default", "is_default_pickup"})
        fields = {k: v for k, v in fields.items() if v is not None or k in ("street", "note")}
        # flags can only be moved onto an address, never cleared in place
        for flag in ("is_default", "is_default_pickup"):
            if getattr(data, flag) is True:
                self.addresses.unset_flag(user["_id"], flag, except_id=address["_id"])
                fields[flag] = True

        try:
            updated = self.addresses.set_fields(address["_id"], fields, user_id=user["_id"]) if fields else address
        except DuplicateKeyError:
            raise _default_conflict()
        logger.info("Shipping address %s updated for user %s", address_id, user_id)
        return updated

    def delete_address(self, user_id, address_id) -> Dict[str, Any]:
        user = self._user(user_id)
        address = self._address(user["_id"], address_id)
        self.addresses.delete(address["_id"])
        logger.info("Shipping address %s deleted for user %s", address_id, user_id)
        return {"success": True}
