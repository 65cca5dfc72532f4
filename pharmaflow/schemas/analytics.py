from datetime import date, datetime

from pydantic import BaseModel


class DailyRevenueOut(BaseModel):
    date: date
    revenue: float


class RevenueOut(BaseModel):
    today: float
    yesterday: float
    this_week: float
    last_week: float
    this_month: float
    last_month: float
    daily_trend: list[DailyRevenueOut]


class SalesSummaryOut(BaseModel):
    today_transactions: int
    this_month_transactions: int
    avg_transaction_value: float


class InventorySummaryOut(BaseModel):
    total_value: float
    total_medicines: int
    out_of_stock: int
    low_stock: int
    turnover_rate: float
    stock_availability: float
    fulfillment_rate: float


class ExpiryBucketOut(BaseModel):
    count: int
    value: float


class ExpirySummaryOut(BaseModel):
    expiring_30_days: ExpiryBucketOut
    expiring_60_days: ExpiryBucketOut
    expiring_90_days: ExpiryBucketOut
    expired: ExpiryBucketOut


class TopSellerOut(BaseModel):
    medicine_id: str
    name: str
    units: int
    revenue: float
    growth: float


class CategoryBreakdownOut(BaseModel):
    name: str
    value: int
    revenue: float
    units: int
    color: str


class AnalyticsOut(BaseModel):
    window_days: int
    generated_at: datetime
    revenue: RevenueOut
    sales: SalesSummaryOut
    inventory: InventorySummaryOut
    expiry: ExpirySummaryOut
    top_sellers: list[TopSellerOut]
    category_breakdown: list[CategoryBreakdownOut]
