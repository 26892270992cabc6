from blindbox.models.database import db
from blindbox.models.ErrorLog import ErrorLog
from blindbox.models.NftInfo import NftInfo
from blindbox.models.OriginMetadataInfo import OriginMetadataInfo
from blindbox.models.UnrevealMetadataInfo import UnrevealMetadataInfo
from blindbox.models.Phase2Holder import Phase2Holder
from blindbox.models.RandomSeedInfo import RandomSeedInfo
from blindbox.models.SyncStatus import SyncStatus

__all__ = [
    "db",
    "ErrorLog",
    "NftInfo",
    "OriginMetadataInfo",
    "UnrevealMetadataInfo",
    "Phase2Holder",
    "RandomSeedInfo",
    "SyncStatus",
]
