"""
服務層

這個 package 包含純計算與查詢邏輯，不負責狀態轉換：
- identity_service：Email / 電話正規化
- outcome_service：依權重抽獎
- history_service：遊玩紀錄查詢條件
- validation_service：validation policy 判斷
- redemption_service：兌換碼發放與驗證
- naming_service：兌換碼與名稱生成
"""
