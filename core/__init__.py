"""
核心業務邏輯層

這個 package 包含所有有狀態的業務邏輯，包括：
- 狀態機：集中管理 session 的狀態轉換
- Manager：管理 Session 與 Display 的生命週期
- Token / Cache：短效 access token
- Broadcast：display 即時訊息分送
- Sweeper：背景清理工作
- Locks：並發控制工具
"""
