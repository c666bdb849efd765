from chillconnect.schemas.auth import Token, UserLogin, UserRegister, UserResponse
from chillconnect.schemas.booking import BookingCreate, BookingResponse, BookingStatusUpdate
from chillconnect.schemas.dispute import DisputeCreate, DisputeResponse
from chillconnect.schemas.rating import RatingCreate, RatingResponse
from chillconnect.schemas.support import TicketCreate, TicketResponse
from chillconnect.schemas.token import TransactionResponse, WalletResponse
from chillconnect.schemas.withdrawal import WithdrawalCreate, WithdrawalResponse
