from stockledger.models.location import Location, LocationType
from stockledger.models.inventory import MovementType, StockMovement, StockRecord
