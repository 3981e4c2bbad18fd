"""
服務層

這個 package 包含純計算邏輯與小型領域服務，不負責 Round 狀態轉換：
- PayoffService：結算規則（平手 / 少數方 / INDECISION）
- FairnessService：commit / reveal
- SeedingService：系統種子輪替
- RoundPhaseService：回合時鐘計算
- Affiliate / Chat / FAQ / Legal / Premium / Auth：各功能模組
"""
