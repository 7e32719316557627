from typing import TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    uid: str
    email: str
    profileImageUrl: str


class AccountDocument(TypedDict, total=False):

    _id: str
    email: str
    hashedPassword: str
