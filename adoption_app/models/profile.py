# adoption_app/models/profile.py
from dataclasses import dataclass
from typing import Optional, Dict, Any


@dataclass
class Profile:
    """
    Firestore 'profiles' 컬렉션 문서 구조.
    신원 제공자가 생성하며, 이 코어에서는 참조만 합니다.
    """
    profile_id: str
    display_name: str
    region: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            profile_id=data['profile_id'],
            display_name=data.get('display_name') or data['profile_id'],
            region=data.get('region')
        )
