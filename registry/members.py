import uuid
from datetime import datetime

from loguru import logger

from .cards import MAX_CARDNO, CardAllocator
from .errors import (
    CreateFailedError,
    InvalidInputError,
    InvalidPhoneError,
    NotFoundError,
    RegistryError,
)
from .genealogy import GenealogyDispatcher
from .models.db import Member
from .phone import validate_phone
from .store import MemberStore, is_numeric_cardno

# Allocated cards tried before giving up on a new member.
CARD_ATTEMPTS = 3


class MemberResolver:
    """Find existing members.

    Phone is the key members remember, card number is the fallback for
    members with no phone on file. Store errors are never caught here.
    """

    def __init__(self, store: MemberStore) -> None:
        self.store: MemberStore = store

    async def find_by_id(self, member_id: str) -> Member:
        member = self.store.find_one(id=member_id)
        if member is None:
            raise NotFoundError(f"no member with id {member_id}")
        return member

    async def find_by_phone(self, phone: str) -> Member:
        if not validate_phone(phone):
            raise InvalidPhoneError(phone)

        member = self.store.find_one(phone=phone)
        if member is None:
            raise NotFoundError(f"no member with phone {phone}")

        logger.debug(f"found member {member.id} by phone {phone}")
        return member

    async def find_by_cardno(self, cardno: str) -> Member:
        member = self.store.find_one(cardno=cardno)
        if member is None:
            raise NotFoundError(f"no member with card {cardno}")

        logger.debug(f"found member {member.id} by card {cardno}")
        return member

    async def find_by_phone_or_cardno(self, phone: str, cardno: str) -> Member:
        if len(phone) == 0 and len(cardno) == 0:
            raise InvalidInputError("phone or card number is required")

        # A given phone decides alone, the card is not a fallback.
        if len(phone) != 0:
            return await self.find_by_phone(phone)
        return await self.find_by_cardno(cardno)

    async def resolve_reference(self, token: str) -> Member:
        """Find a referrer from a token that is either a phone or a card number."""
        if len(token) == 0:
            raise InvalidInputError("referrer phone or card number is required")

        if validate_phone(token):
            return await self.find_by_phone(token)
        return await self.find_by_cardno(token)


class MemberCreator:

    def __init__(
        self,
        store: MemberStore,
        resolver: MemberResolver,
        cards: CardAllocator,
        genealogy: GenealogyDispatcher,
        validate_phone_on_create: bool = False,
    ) -> None:
        self.store: MemberStore = store
        self.resolver: MemberResolver = resolver
        self.cards: CardAllocator = cards
        self.genealogy: GenealogyDispatcher = genealogy
        self.validate_phone_on_create: bool = validate_phone_on_create

    async def create_member(
        self,
        phone: str = "",
        cardno: str = "",
        reference: str = "",
        level: str = "",
        name: str = "",
    ) -> Member:
        if self.validate_phone_on_create and len(phone) != 0 and not validate_phone(phone):
            raise InvalidPhoneError(phone)

        # An unknown referrer never blocks the new member.
        reference_id: str | None = None
        if len(reference) != 0:
            try:
                referrer = await self.resolver.resolve_reference(reference)
                reference_id = referrer.id
            except RegistryError as e:
                logger.warning(f"referrer {reference} not resolved, create without it. {e}")

        allocated = False
        if is_numeric_cardno(cardno):
            await self.cards.mark_used(int(cardno))
        else:
            if len(cardno) != 0:
                logger.info(f"card {cardno!r} is not numeric, allocate a new one")
            cardno = await self.cards.allocate_new()
            allocated = True

        member_id = str(uuid.uuid4())
        for _ in range(CARD_ATTEMPTS):
            member = Member(
                id=member_id,
                cardno=cardno,
                phone=phone or None,
                level=level or None,
                name=name or None,
                reference=reference_id,
                create_time=datetime.now(),
            )

            try:
                written = self.store.insert(member)
            except Exception:
                if allocated:
                    await self.cards.release(cardno)
                raise

            if written:
                break

            if not allocated:
                raise CreateFailedError(f"create member failed, phone {phone}, card {cardno}")

            if self.store.find_one(cardno=cardno) is None:
                await self.cards.release(cardno)
                raise CreateFailedError(f"create member failed, phone {phone}, card {cardno}")

            # Card taken behind the allocator, skip past every stored card.
            logger.warning(f"allocated card {cardno} already in use, allocate again")
            highest = self.store.max_numeric_cardno(upto=MAX_CARDNO)
            await self.cards.mark_used(highest or int(cardno))
            cardno = await self.cards.allocate_new()
        else:
            await self.cards.release(cardno)
            raise CreateFailedError(f"no free card for new member after {CARD_ATTEMPTS} attempts")

        logger.info(f"new member {member}")

        # Build genealogy in background, return new member quickly.
        self.genealogy.submit(member)
        return member

    async def find_or_create(
        self,
        phone: str = "",
        cardno: str = "",
        reference: str = "",
        level: str = "",
        name: str = "",
        create: bool = True,
    ) -> Member:
        try:
            return await self.resolver.find_by_phone_or_cardno(phone, cardno)
        except NotFoundError:
            if not create:
                raise

        logger.info(f"no member with phone {phone!r} or card {cardno!r}, create one")
        return await self.create_member(phone, cardno, reference, level, name)
